"""
Tests for the command line entry point helpers.
"""

import pytest
import yaml

from api import database
from main import import_posts, load_post_entries, run_recover

GALLERY_URL = "https://gall.dcinside.com/board/lists/?id=programming"


class TestImportPosts:

    @pytest.mark.asyncio
    async def test_valid_entries_created(self, tmp_path, image_file):
        path = tmp_path / "posts.yaml"
        path.write_text(yaml.safe_dump({"posts": [
            {"gallery_url": GALLERY_URL, "title": "First", "content_html": "<p>1</p>", "password": "1234"},
            {
                "gallery_url": GALLERY_URL,
                "title": "Second",
                "content_html": "<p>2</p>",
                "password": "1234",
                "image_paths": str(image_file),
                "scheduled_at": "2030-01-01T09:00:00",
            },
        ]}, allow_unicode=True), encoding="utf-8")

        assert await import_posts(str(path)) == 2

        jobs = await database.list_post_jobs(order_by="title", order="asc")
        assert [job["title"] for job in jobs] == ["First", "Second"]
        assert jobs[1]["image_paths"] == [str(image_file)]
        assert jobs[1]["scheduled_at"].startswith("2030-01-01T09:00:00")

    @pytest.mark.asyncio
    async def test_invalid_entries_skipped(self, tmp_path):
        path = tmp_path / "posts.yaml"
        path.write_text(yaml.safe_dump([
            {"gallery_url": GALLERY_URL, "title": "No password", "content_html": "<p>x</p>"},
            {"gallery_url": GALLERY_URL, "title": "Unknown field", "content_html": "<p>x</p>", "color": "red"},
        ]), encoding="utf-8")

        assert await import_posts(str(path)) == 0
        assert await database.list_post_jobs() == []

    @pytest.mark.asyncio
    async def test_date_only_schedule_means_midnight(self, tmp_path):
        path = tmp_path / "posts.yaml"
        path.write_text(
            "- gallery_url: " + GALLERY_URL + "\n"
            "  title: Dated\n"
            "  content_html: <p>d</p>\n"
            "  password: '1234'\n"
            "  scheduled_at: 2030-05-01\n",
            encoding="utf-8",
        )

        assert await import_posts(str(path)) == 1

        jobs = await database.list_post_jobs()
        assert jobs[0]["scheduled_at"].startswith("2030-05-01T00:00:00")

    @pytest.mark.asyncio
    async def test_non_mapping_entry_skipped(self, tmp_path):
        path = tmp_path / "posts.yaml"
        path.write_text(yaml.safe_dump([
            "just a string",
            {"gallery_url": GALLERY_URL, "title": "Kept", "content_html": "<p>k</p>", "password": "1234"},
            {"gallery_url": GALLERY_URL, "title": "Bad time", "content_html": "<p>b</p>",
             "password": "1234", "scheduled_at": "tomorrow"},
        ]), encoding="utf-8")

        assert await import_posts(str(path)) == 1

        jobs = await database.list_post_jobs()
        assert [job["title"] for job in jobs] == ["Kept"]

    def test_rejects_non_list(self, tmp_path):
        path = tmp_path / "posts.yaml"
        path.write_text("just a string", encoding="utf-8")

        with pytest.raises(ValueError):
            load_post_entries(str(path))


class TestRecoverCommand:

    @pytest.mark.asyncio
    async def test_recover_prints_failed_ids(self, capsys):
        job_id = await database.create_blog_post_job("Interrupted")
        await database.claim_job(job_id)

        await run_recover()

        out = capsys.readouterr().out
        assert "Failed 1 job(s) and 0 post job(s)" in out
        assert job_id in out
