"""
GENERATE_TOPIC job processor.

Asks the topic generator for post titles and stores them on the topic
payload row.
"""

from typing import Optional

from ai.client import get_ai_client
from ai.content_service import TopicGenerator
from api.database import JOB_TYPE_GENERATE_TOPIC, get_topic_job, save_topic_result
from api.job_logs import log_info
from api.job_processor import JobProcessor, JobResult


class TopicJobProcessor(JobProcessor):
    job_type = JOB_TYPE_GENERATE_TOPIC

    def __init__(self, generator: Optional[TopicGenerator] = None):
        self.generator = generator

    async def process(self, job_id: str) -> JobResult:
        payload = await get_topic_job(job_id)
        if payload is None:
            raise ValueError(f"Topic payload missing for job {job_id}")

        topic = payload["topic"]
        limit = int(payload.get("limit") or 10)
        await log_info(job_id, f"Generating {limit} topics for: {topic}")

        generator = self.generator or TopicGenerator(await get_ai_client())
        topics = await generator.generate_topics(topic, limit)
        await save_topic_result(job_id, [t.to_dict() for t in topics])

        message = f"{len(topics)} topics generated"
        await log_info(job_id, message)
        return JobResult(result_msg=message)
