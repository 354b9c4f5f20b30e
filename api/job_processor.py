"""
Job processor contract and registry.

A processor handles one job type. `process` either returns a JobResult
(the job completes with it) or raises (the job fails with the exception
message). The registry is built once at startup and keyed by job type.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    result_url: Optional[str] = None
    result_msg: Optional[str] = None


class JobProcessor(ABC):
    """Handler for one job type."""

    job_type: str

    def can_process(self, job: dict) -> bool:
        return job.get("type") == self.job_type

    @abstractmethod
    async def process(self, job_id: str) -> JobResult:
        raise NotImplementedError


class ProcessorRegistry:
    """Maps job types to their processors."""

    def __init__(self, processors: Iterable[JobProcessor] = ()):
        self._processors: Dict[str, JobProcessor] = {}
        for processor in processors:
            self.register(processor)

    def register(self, processor: JobProcessor):
        if processor.job_type in self._processors:
            raise ValueError(f"Processor already registered for job type {processor.job_type}")
        self._processors[processor.job_type] = processor
        logger.debug(f"Registered processor for {processor.job_type}: {type(processor).__name__}")

    def resolve(self, job: dict) -> Optional[JobProcessor]:
        """Processor for the job, or None when no registered processor accepts it."""
        processor = self._processors.get(job.get("type"))
        if processor is None or not processor.can_process(job):
            return None
        return processor

    @property
    def job_types(self):
        return sorted(self._processors)


def build_default_registry(publisher=None) -> ProcessorRegistry:
    """Registry with every built-in processor."""
    from api.blog_post_job import BlogPostJobProcessor
    from api.topic_job import TopicJobProcessor

    return ProcessorRegistry([
        BlogPostJobProcessor(publisher=publisher),
        TopicJobProcessor(),
    ])
