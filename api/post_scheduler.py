#!/usr/bin/env python3
"""
Scheduled post poller.

Every POST_POLL_INTERVAL_SECONDS, finds destination post jobs whose
scheduled time has passed and hands them to the serial post queue.
Rows stay pending until the queue actually attempts them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from api.config import config
from api.database import list_due_post_jobs
from api.logging_config import logger
from api.post_queue import PostQueue


@dataclass
class PostScheduler:
    queue: PostQueue
    interval_seconds: float = field(default_factory=lambda: config.POST_POLL_INTERVAL_SECONDS)
    _task: Optional[asyncio.Task] = None
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    _ticking: bool = False

    def start(self):
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_loop(), name="post-scheduler")
        logger.info(f"PostScheduler started (every {self.interval_seconds}s)")

    async def stop(self):
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        logger.info("PostScheduler stopped")

    async def run_loop(self):
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> int:
        """Enqueue every due post job. Returns how many were newly queued."""
        if self._ticking:
            return 0
        self._ticking = True
        queued = 0
        try:
            for row in await list_due_post_jobs():
                if await self.queue.enqueue(row):
                    queued += 1
            if queued:
                logger.info(f"Queued {queued} scheduled post(s)")
        except Exception as e:
            logger.error(f"PostScheduler tick error: {e}", exc_info=True)
        finally:
            self._ticking = False
        return queued
