"""
Startup recovery for jobs left in `processing` by a previous process.

Nothing can still be running them, so each one is failed with a fixed
message; the operator retries it explicitly if wanted.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from api.database import (
    STATUS_PROCESSING,
    fail_job,
    fail_post_job,
    list_jobs_by_status,
    list_post_jobs_by_status,
)
from api.job_logs import log_warn

logger = logging.getLogger(__name__)

ORPHAN_MESSAGE = "Interrupted by restart"


@dataclass
class RecoveryReport:
    jobs: List[str] = field(default_factory=list)
    post_jobs: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.jobs) + len(self.post_jobs)


async def recover_orphans() -> RecoveryReport:
    """Fail every job and post job still marked processing. Run before any poller starts."""
    report = RecoveryReport()

    for job_id in await list_jobs_by_status(STATUS_PROCESSING):
        await log_warn(job_id, ORPHAN_MESSAGE)
        if await fail_job(job_id, ORPHAN_MESSAGE):
            report.jobs.append(job_id)

    for post_id in await list_post_jobs_by_status(STATUS_PROCESSING):
        await log_warn(post_id, ORPHAN_MESSAGE)
        if await fail_post_job(post_id, ORPHAN_MESSAGE):
            report.post_jobs.append(post_id)

    if report.total:
        logger.warning(
            f"Recovered {len(report.jobs)} orphaned job(s) and {len(report.post_jobs)} orphaned post job(s)"
        )
    return report
