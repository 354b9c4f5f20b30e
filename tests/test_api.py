"""
HTTP surface tests with FastAPI TestClient. Pollers are disabled.
"""

import asyncio
from unittest.mock import AsyncMock, patch

from adapters.dcinside import LoginResult
from api import database

GALLERY_URL = "https://gall.dcinside.com/mgallery/board/lists/?id=testgall"


def run(coro):
    return asyncio.run(coro)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestJobsEndpoints:

    def test_create_and_get_blog_post_job(self, client):
        response = client.post("/jobs/blog-post", json={"title": "Hello", "labels": ["news"], "priority": 3})
        assert response.status_code == 201
        job = response.json()
        assert job["status"] == "pending"
        assert job["priority"] == 3
        assert job["payload"]["labels"] == ["news"]

        detail = client.get(f"/jobs/{job['id']}").json()
        assert detail["subject"] == "Hello"

    def test_list_filters_by_type(self, client):
        client.post("/jobs/blog-post", json={"title": "Post"})
        client.post("/jobs/topic", json={"topic": "python", "limit": 5})

        body = client.get("/jobs", params={"type": "generate_topic"}).json()

        assert body["count"] == 1
        assert body["jobs"][0]["subject"] == "python"

    def test_missing_job_is_404(self, client):
        assert client.get("/jobs/job_missing").status_code == 404
        assert client.delete("/jobs/job_missing").status_code == 404
        assert client.get("/jobs/job_missing/logs").status_code == 404

    def test_retry_requires_failed(self, client):
        job_id = client.post("/jobs/blog-post", json={"title": "Fresh"}).json()["id"]

        response = client.post(f"/jobs/{job_id}/retry")

        assert response.status_code == 409

    def test_retry_failed_job(self, client):
        job_id = run(database.create_blog_post_job("Broken"))
        run(database.claim_job(job_id))
        run(database.fail_job(job_id, "boom"))

        response = client.post(f"/jobs/{job_id}/retry")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        latest = client.get(f"/jobs/{job_id}/logs/latest").json()["log"]
        assert latest["message"] == "Job reset to pending for retry"

    def test_delete_processing_is_409(self, client):
        job_id = run(database.create_blog_post_job("Busy"))
        run(database.claim_job(job_id))

        assert client.delete(f"/jobs/{job_id}").status_code == 409

    def test_bulk_retry_reports_per_id(self, client):
        failed = run(database.create_blog_post_job("Failed"))
        run(database.claim_job(failed))
        run(database.fail_job(failed, "boom"))
        pending = run(database.create_blog_post_job("Pending"))

        body = client.post("/jobs/bulk/retry", json={"ids": [failed, pending, "job_missing"]}).json()

        assert body["succeeded"] == 1
        assert body["failed"] == 2
        assert [r["success"] for r in body["results"]] == [True, False, False]

    def test_bulk_delete(self, client):
        first = client.post("/jobs/blog-post", json={"title": "A"}).json()["id"]
        second = client.post("/jobs/blog-post", json={"title": "B"}).json()["id"]

        body = client.post("/jobs/bulk/delete", json={"ids": [first, second]}).json()

        assert body["succeeded"] == 2
        assert client.get("/jobs").json()["count"] == 0


class TestPostJobsEndpoints:

    def test_create_post_job(self, client, image_file):
        response = client.post("/post-jobs", json={
            "gallery_url": GALLERY_URL,
            "title": "Hello gallery",
            "content_html": "<p>Hi</p>",
            "password": "1234",
            "image_paths": f"{image_file}\n",
        })

        assert response.status_code == 201
        job = response.json()
        assert job["status"] == "pending"
        assert job["image_paths"] == [str(image_file)]
        assert job["password"] == "********"

    def test_missing_image_rejected(self, client, tmp_path):
        response = client.post("/post-jobs", json={
            "gallery_url": GALLERY_URL,
            "title": "Hello",
            "content_html": "<p>Hi</p>",
            "password": "1234",
            "image_paths": [str(tmp_path / "missing.png")],
        })

        assert response.status_code == 422
        assert any("Image file not found" in e for e in response.json()["errors"])

    def test_missing_password_rejected(self, client):
        response = client.post("/post-jobs", json={
            "gallery_url": GALLERY_URL,
            "title": "Hello",
            "content_html": "<p>Hi</p>",
        })

        assert response.status_code == 422

    def test_search_matches_title_or_gallery(self, client, post_row):
        run(database.create_post_job(dict(post_row, title="Morning news")))
        run(database.create_post_job(dict(post_row, title="Evening digest")))
        other_gallery = "https://gall.dcinside.com/board/lists/?id=programming"
        run(database.create_post_job(dict(post_row, title="Unrelated", gallery_url=other_gallery)))

        by_title = client.get("/post-jobs", params={"search": "news"}).json()
        by_gallery = client.get("/post-jobs", params={"search": "programming"}).json()

        assert [job["title"] for job in by_title["post_jobs"]] == ["Morning news"]
        assert [job["title"] for job in by_gallery["post_jobs"]] == ["Unrelated"]

    def test_retry_and_logs(self, client, post_row):
        post_id = run(database.create_post_job(post_row))
        run(database.claim_post_job(post_id))
        run(database.fail_post_job(post_id, "Post rejected: spam"))

        response = client.post(f"/post-jobs/{post_id}/retry")

        assert response.status_code == 200
        assert response.json()["result_msg"] is None
        logs = client.get(f"/post-jobs/{post_id}/logs").json()["logs"]
        assert logs[-1]["message"] == "Job reset to pending for retry"


class TestSettingsEndpoints:

    def test_update_merges(self, client):
        client.put("/settings/app", json={"task_delay_seconds": 2})
        body = client.put("/settings/app", json={"image_upload_failure_action": "skip"}).json()

        assert body["task_delay_seconds"] == 2
        assert body["image_upload_failure_action"] == "skip"
        assert client.get("/settings/app").json()["task_delay_seconds"] == 2

    def test_invalid_policy(self, client):
        response = client.put("/settings/app", json={"image_upload_failure_action": "retry"})
        assert response.status_code == 422


class TestLoginEndpoint:

    def test_login_success(self, client):
        with patch("api.main.DCInsideAdapter.login", AsyncMock(return_value=LoginResult(True, "Login succeeded"))):
            response = client.post("/dcinside/login", json={"login_id": "me", "password": "pw"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_login_failure(self, client):
        with patch("api.main.DCInsideAdapter.login", AsyncMock(return_value=LoginResult(False, "Login failed"))):
            response = client.post("/dcinside/login", json={"login_id": "me", "password": "wrong"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Login failed"

    def test_logout_removes_saved_session(self, client, tmp_path, monkeypatch):
        from core.cookie_store import CookieStore

        store = CookieStore(str(tmp_path / "cookies"))
        store.save("dcinside", "me", [{"name": "PHPSESSID", "value": "x", "domain": ".dcinside.com", "path": "/"}])
        monkeypatch.setattr("api.main.get_cookie_store", lambda: store)

        assert client.delete("/dcinside/login/me").status_code == 200
        assert store.load("dcinside", "me") is None
        assert client.delete("/dcinside/login/me").status_code == 404
