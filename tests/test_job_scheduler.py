"""
Tests for the job scheduler tick, the processor registry and the
built-in processors.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from api import database
from api.job_processor import JobProcessor, JobResult, ProcessorRegistry
from api.job_scheduler import JobScheduler


class RecordingProcessor(JobProcessor):
    """Processor double that records calls and can be told to fail."""

    def __init__(self, job_type="post", fail_on=()):
        self.job_type = job_type
        self.fail_on = set(fail_on)
        self.calls = []

    async def process(self, job_id):
        self.calls.append(job_id)
        if job_id in self.fail_on:
            raise RuntimeError(f"cannot publish {job_id}")
        return JobResult(result_url=f"https://blog/{job_id}", result_msg="Blog post published")


class TestRegistry:

    def test_duplicate_job_type_rejected(self):
        registry = ProcessorRegistry([RecordingProcessor("post")])
        with pytest.raises(ValueError):
            registry.register(RecordingProcessor("post"))

    def test_resolve_unknown_type(self):
        registry = ProcessorRegistry([RecordingProcessor("post")])
        assert registry.resolve({"type": "unknown"}) is None
        assert registry.resolve({"type": "post"}) is not None
        assert registry.job_types == ["post"]


class TestSchedulerTick:
    """Each tick runs every due job once."""

    @pytest.mark.asyncio
    async def test_tick_completes_due_jobs(self):
        processor = RecordingProcessor()
        scheduler = JobScheduler(registry=ProcessorRegistry([processor]))
        job_id = await database.create_blog_post_job("Due")

        assert await scheduler.tick() == 1

        job = await database.get_job(job_id)
        assert job["status"] == "completed"
        assert job["result_url"] == f"https://blog/{job_id}"
        messages = [entry["message"] for entry in await database.get_job_logs(job_id)]
        assert messages[0] == "Job started"

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        first = await database.create_blog_post_job("First", priority=2)
        second = await database.create_blog_post_job("Second", priority=1)
        processor = RecordingProcessor(fail_on={first})
        scheduler = JobScheduler(registry=ProcessorRegistry([processor]))

        await scheduler.tick()

        assert processor.calls == [first, second]
        failed = await database.get_job(first)
        assert failed["status"] == "failed"
        assert failed["error_message"] == f"cannot publish {first}"
        assert (await database.get_job(second))["status"] == "completed"
        latest = await database.get_latest_job_log(first)
        assert latest["level"] == "error"

    @pytest.mark.asyncio
    async def test_log_write_failure_still_fails_job(self, monkeypatch):
        first = await database.create_blog_post_job("First", priority=2)
        second = await database.create_blog_post_job("Second", priority=1)
        processor = RecordingProcessor(fail_on={first})
        monkeypatch.setattr(
            "api.job_scheduler.log_error", AsyncMock(side_effect=RuntimeError("database is locked"))
        )
        scheduler = JobScheduler(registry=ProcessorRegistry([processor]))

        await scheduler.tick()

        assert (await database.get_job(first))["status"] == "failed"
        assert (await database.get_job(second))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_job_without_processor_fails(self):
        scheduler = JobScheduler(registry=ProcessorRegistry([RecordingProcessor("post")]))
        job_id = await database.create_topic_job("orphan type")

        await scheduler.tick()

        job = await database.get_job(job_id)
        assert job["status"] == "failed"
        assert job["error_message"] == "No valid processor for job type generate_topic"

    @pytest.mark.asyncio
    async def test_future_jobs_are_not_run(self):
        processor = RecordingProcessor()
        scheduler = JobScheduler(registry=ProcessorRegistry([processor]))
        job_id = await database.create_blog_post_job("Later", scheduled_at=datetime.now() + timedelta(hours=1))

        assert await scheduler.tick() == 0
        assert processor.calls == []
        assert (await database.get_job(job_id))["status"] == "pending"

    @pytest.mark.asyncio
    async def test_already_claimed_job_is_skipped(self):
        processor = RecordingProcessor()
        scheduler = JobScheduler(registry=ProcessorRegistry([processor]))
        job_id = await database.create_blog_post_job("Taken")
        job = await database.get_job(job_id)
        await database.claim_job(job_id)

        assert await scheduler._run_job(job) is False
        assert processor.calls == []


class TestBuiltInProcessors:

    @pytest.mark.asyncio
    async def test_blog_post_processor_generates_and_publishes(self):
        from api.blog_post_job import BlogPostJobProcessor
        from api.publish_engine import BlogDestination, PublishResult

        generator = MagicMock()
        generator.generate = AsyncMock(return_value="<h2>Body</h2>")
        publisher = MagicMock()
        publisher.publish = AsyncMock(return_value=PublishResult(url="https://blog/p/1", message="ok"))
        job_id = await database.create_blog_post_job("Title", "brief", ["news"])

        result = await BlogPostJobProcessor(publisher=publisher, generator=generator).process(job_id)

        assert result.result_url == "https://blog/p/1"
        generator.generate.assert_awaited_once_with("Title", "brief")
        destination = publisher.publish.await_args.args[0]
        assert destination == BlogDestination(title="Title", content_html="<h2>Body</h2>", labels=["news"])

    @pytest.mark.asyncio
    async def test_topic_processor_saves_topics(self):
        from ai.content_service import Topic
        from api.topic_job import TopicJobProcessor

        generator = MagicMock()
        generator.generate_topics = AsyncMock(return_value=[Topic("A", "a"), Topic("B", "b")])
        job_id = await database.create_topic_job("python", limit=2)

        result = await TopicJobProcessor(generator=generator).process(job_id)

        assert result.result_msg == "2 topics generated"
        payload = await database.get_topic_job(job_id)
        assert [t["title"] for t in payload["result"]] == ["A", "B"]
