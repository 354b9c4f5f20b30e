"""
BLOG_POST job processor.

Loads the blog payload, writes the post body with the content
generator, and publishes it to the configured blog.
"""

from typing import Optional

from ai.client import get_ai_client
from ai.content_service import ContentGenerator
from api.database import JOB_TYPE_BLOG_POST, get_blog_job
from api.job_logs import log_info
from api.job_processor import JobProcessor, JobResult
from api.publish_engine import BlogDestination, PublishEngine, get_publish_engine


class BlogPostJobProcessor(JobProcessor):
    job_type = JOB_TYPE_BLOG_POST

    def __init__(self, publisher: Optional[PublishEngine] = None, generator: Optional[ContentGenerator] = None):
        self.publisher = publisher
        self.generator = generator

    async def _generator(self) -> ContentGenerator:
        if self.generator is not None:
            return self.generator
        return ContentGenerator(await get_ai_client())

    async def process(self, job_id: str) -> JobResult:
        payload = await get_blog_job(job_id)
        if payload is None:
            raise ValueError(f"Blog post payload missing for job {job_id}")

        title = payload["title"]
        await log_info(job_id, f"Generating content: {title}")
        generator = await self._generator()
        html = await generator.generate(title, payload.get("content") or "")
        await log_info(job_id, f"Content generated ({len(html)} chars)")

        await log_info(job_id, "Publishing to blog")
        publisher = self.publisher or get_publish_engine()
        result = await publisher.publish(
            BlogDestination(title=title, content_html=html, labels=payload.get("labels") or [])
        )
        await log_info(job_id, f"Published: {result.url}")

        return JobResult(result_url=result.url, result_msg="Blog post published")
