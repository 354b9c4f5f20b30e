"""
Tests for the job store lifecycle: claim, terminal transitions, retry,
delete, due ordering, job logs and operator settings.
"""

from datetime import datetime, timedelta

import pytest

from api import database
from api.errors import JobNotFoundError, JobStateError


class TestClaim:
    """Claim is the only way into processing."""

    @pytest.mark.asyncio
    async def test_claim_moves_pending_to_processing(self):
        job_id = await database.create_blog_post_job("Hello")

        assert await database.claim_job(job_id) is True
        job = await database.get_job(job_id)
        assert job["status"] == "processing"
        assert job["started_at"] is not None

    @pytest.mark.asyncio
    async def test_second_poller_loses_claim(self):
        job_id = await database.create_blog_post_job("Race")

        results = [await database.claim_job(job_id) for _ in range(3)]

        assert results == [True, False, False]

    @pytest.mark.asyncio
    async def test_claim_non_pending_fails(self):
        job_id = await database.create_blog_post_job("Once")
        await database.claim_job(job_id)

        assert await database.claim_job(job_id) is False
        assert await database.claim_job("job_missing") is False


class TestTerminalTransitions:
    """completed / failed are only written against processing rows."""

    @pytest.mark.asyncio
    async def test_complete_requires_processing(self):
        job_id = await database.create_blog_post_job("Pending")

        assert await database.complete_job(job_id, result_url="https://x") is False
        assert (await database.get_job(job_id))["status"] == "pending"

    @pytest.mark.asyncio
    async def test_complete_records_result(self):
        job_id = await database.create_blog_post_job("Done")
        await database.claim_job(job_id)

        assert await database.complete_job(job_id, result_url="https://blog/1", result_msg="ok") is True
        job = await database.get_job(job_id)
        assert job["status"] == "completed"
        assert job["result_url"] == "https://blog/1"
        assert job["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_fail_records_error(self):
        job_id = await database.create_topic_job("python")
        await database.claim_job(job_id)

        assert await database.fail_job(job_id, "boom") is True
        job = await database.get_job(job_id)
        assert job["status"] == "failed"
        assert job["error_message"] == "boom"

    @pytest.mark.asyncio
    async def test_post_job_failure_stored_in_result_msg(self, post_row):
        post_id = await database.create_post_job(post_row)
        await database.claim_post_job(post_id)

        await database.fail_post_job(post_id, "Post rejected: spam")
        job = await database.get_post_job(post_id)
        assert job["status"] == "failed"
        assert job["result_msg"] == "Post rejected: spam"


class TestRetryAndDelete:
    """Operator actions on finished jobs."""

    @pytest.mark.asyncio
    async def test_retry_resets_failed_job(self):
        job_id = await database.create_blog_post_job("Again")
        await database.claim_job(job_id)
        await database.fail_job(job_id, "boom")

        job = await database.retry_job(job_id)

        assert job["status"] == "pending"
        assert job["error_message"] is None
        assert job["started_at"] is None
        latest = await database.get_latest_job_log(job_id)
        assert latest["message"] == "Job reset to pending for retry"

    @pytest.mark.asyncio
    async def test_retry_rejects_non_failed(self):
        job_id = await database.create_blog_post_job("Fresh")

        with pytest.raises(JobStateError):
            await database.retry_job(job_id)

    @pytest.mark.asyncio
    async def test_retry_missing_job(self):
        with pytest.raises(JobNotFoundError):
            await database.retry_job("job_missing")

    @pytest.mark.asyncio
    async def test_delete_refused_while_processing(self):
        job_id = await database.create_blog_post_job("Busy")
        await database.claim_job(job_id)

        with pytest.raises(JobStateError):
            await database.delete_job(job_id)
        assert await database.get_job(job_id) is not None

    @pytest.mark.asyncio
    async def test_delete_removes_payload_and_logs(self):
        job_id = await database.create_blog_post_job("Gone", "<p>x</p>", ["a"])
        await database.add_job_log(job_id, "something")

        await database.delete_job(job_id)

        assert await database.get_job(job_id) is None
        assert await database.get_blog_job(job_id) is None
        assert await database.get_job_logs(job_id) == []

    @pytest.mark.asyncio
    async def test_delete_missing_job(self):
        with pytest.raises(JobNotFoundError):
            await database.delete_job("job_missing")


class TestDueJobs:
    """Due selection and ordering."""

    @pytest.mark.asyncio
    async def test_due_jobs_ordered_by_priority_then_time(self):
        now = datetime.now()
        low_old = await database.create_blog_post_job("low old", priority=0, scheduled_at=now - timedelta(hours=2))
        high = await database.create_blog_post_job("high", priority=5, scheduled_at=now - timedelta(minutes=1))
        low_new = await database.create_blog_post_job("low new", priority=0, scheduled_at=now - timedelta(hours=1))
        await database.create_blog_post_job("future", scheduled_at=now + timedelta(hours=1))

        due = await database.list_due_jobs(now)

        assert [job["id"] for job in due] == [high, low_old, low_new]

    @pytest.mark.asyncio
    async def test_due_post_jobs_exclude_non_pending(self, post_row):
        past = datetime.now() - timedelta(minutes=5)
        first = await database.create_post_job(post_row, scheduled_at=past)
        second = await database.create_post_job(post_row, scheduled_at=past)
        await database.claim_post_job(second)

        due = await database.list_due_post_jobs()

        assert [row["id"] for row in due] == [first]
        assert due[0]["image_paths"] == []

    def test_to_db_time_normalizes_aware_values(self):
        aware = datetime(2024, 1, 1, 12, 0).astimezone()
        assert database.to_db_time(aware) == aware.replace(tzinfo=None).isoformat(timespec="microseconds")
        assert database.to_db_time(None) is None


class TestJobLogsAndSettings:

    @pytest.mark.asyncio
    async def test_logs_in_order_with_latest(self):
        await database.add_job_log("job_1", "first")
        await database.add_job_log("job_1", "second", "warn")

        logs = await database.get_job_logs("job_1")
        assert [entry["message"] for entry in logs] == ["first", "second"]
        assert (await database.get_latest_job_log("job_1"))["level"] == "warn"

    @pytest.mark.asyncio
    async def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError):
            await database.add_job_log("job_1", "x", "debug")

    @pytest.mark.asyncio
    async def test_settings_merge_over_defaults(self):
        defaults = await database.get_app_settings()

        await database.save_app_settings({"task_delay_seconds": 3})
        settings = await database.save_app_settings({"show_browser_window": False})

        assert settings["task_delay_seconds"] == 3
        assert settings["show_browser_window"] is False
        assert settings["image_upload_failure_action"] == defaults["image_upload_failure_action"]
