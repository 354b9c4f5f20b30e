#!/usr/bin/env python3
"""
Job Scheduler

Polls the job store on a fixed interval and runs every due job:
- claims each job (pending -> processing) before running it; a lost claim
  means another poller has it, so the job is skipped
- resolves the processor from the registry; unknown job types fail
- records completed / failed with the processor's result or error

Due jobs within a tick run one after another. A tick that comes due while
the previous one is still running is skipped.

This scheduler is designed to run inside the FastAPI lifespan task.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Optional

from api.config import config
from api.database import claim_job, complete_job, fail_job, list_due_jobs
from api.job_logs import log_error, log_info
from api.job_processor import ProcessorRegistry
from api.logging_config import log_job_event, logger


@dataclass
class JobScheduler:
    registry: ProcessorRegistry
    interval_seconds: float = field(default_factory=lambda: config.JOB_POLL_INTERVAL_SECONDS)
    scheduler_id: str = field(default_factory=lambda: f"jobs_{uuid.uuid4().hex[:10]}")
    _task: Optional[asyncio.Task] = None
    _tick_task: Optional[asyncio.Task] = None
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    _ticking: bool = False

    def start(self):
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_loop(), name=f"job-scheduler:{self.scheduler_id}")
        logger.info(f"JobScheduler started: {self.scheduler_id} (every {self.interval_seconds}s)")

    async def stop(self):
        self._stop_event.set()
        for task in (self._task, self._tick_task):
            if task and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        logger.info(f"JobScheduler stopped: {self.scheduler_id}")

    async def run_loop(self):
        while not self._stop_event.is_set():
            if self._ticking:
                logger.debug("Previous job tick still running, skipping")
            else:
                self._tick_task = asyncio.create_task(self.tick())

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> int:
        """Run every due job once. Returns how many jobs this tick claimed."""
        if self._ticking:
            return 0
        self._ticking = True
        claimed = 0
        try:
            for job in await list_due_jobs():
                try:
                    if await self._run_job(job):
                        claimed += 1
                except Exception as e:
                    logger.error(f"Job {job['id']} could not be recorded: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"JobScheduler tick error: {e}", exc_info=True)
        finally:
            self._ticking = False
        return claimed

    async def _run_job(self, job: dict) -> bool:
        job_id = str(job["id"])
        processor = self.registry.resolve(job)

        if processor is None:
            # Claim first so the failure goes through processing like every other terminal state.
            if not await claim_job(job_id):
                return False
            error = f"No valid processor for job type {job.get('type')}"
            try:
                await log_error(job_id, error)
            finally:
                await fail_job(job_id, error)
            log_job_event(job_id, "failed", error)
            return True

        if not await claim_job(job_id):
            logger.debug(f"Job {job_id} already claimed, skipping")
            return False

        log_job_event(job_id, "processing")
        await log_info(job_id, "Job started")

        try:
            result = await processor.process(job_id)
        except Exception as e:
            error = str(e) or type(e).__name__
            try:
                await log_error(job_id, f"Job failed: {error}")
            finally:
                await fail_job(job_id, error)
            log_job_event(job_id, "failed", error)
            return True

        await log_info(job_id, result.result_msg or "Job completed")
        await complete_job(job_id, result_url=result.result_url, result_msg=result.result_msg)
        log_job_event(job_id, "completed")
        return True
