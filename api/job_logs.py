"""
Job log sink helpers.

Every progress message for a job goes two places: the append-only
job_logs table (what an operator sees per job) and the process log.
"""

import logging

from api.database import add_job_log

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


async def write_job_log(job_id: str, message: str, level: str = "info"):
    """Persist a job log entry and mirror it to the process log."""
    logger.log(_PY_LEVELS.get(level, logging.INFO), f"[{job_id}] {message}")
    await add_job_log(job_id, message, level)


async def log_info(job_id: str, message: str):
    await write_job_log(job_id, message, "info")


async def log_warn(job_id: str, message: str):
    await write_job_log(job_id, message, "warn")


async def log_error(job_id: str, message: str):
    await write_job_log(job_id, message, "error")
