"""
Serial post queue.

Destination post jobs are published one at a time, one browser session
each, with an operator-configured pause between consecutive posts. The
queue only holds ids and params; the post_jobs table stays the source of
truth and a row is claimed right before its attempt.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

from adapters.base import PostParams
from adapters.dcinside import validate_dcinside_params
from api.database import claim_post_job, complete_post_job, fail_post_job, get_app_settings
from api.job_logs import log_error, log_info, write_job_log
from api.publish_engine import ForumDestination, PublishEngine, get_publish_engine

logger = logging.getLogger(__name__)


@dataclass
class QueueItem:
    id: str
    params: PostParams


class PostQueue:
    """FIFO of post jobs drained by a single task."""

    def __init__(
        self,
        publisher: Optional[PublishEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.publisher = publisher
        self._sleep = sleep
        self._items: Deque[QueueItem] = deque()
        self._current_id: Optional[str] = None
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def queued_ids(self):
        return [item.id for item in self._items]

    def __len__(self) -> int:
        return len(self._items)

    async def enqueue(self, row: dict) -> bool:
        """
        Queue a post job row. Returns False when the id is already queued
        or running, or when the row is invalid (the job is then failed).
        """
        post_id = str(row["id"])
        if post_id == self._current_id or post_id in self.queued_ids():
            return False

        params = PostParams.from_row(row)
        problems = validate_dcinside_params(params)
        if problems:
            error = f"Invalid post parameters: {', '.join(problems)}"
            if await claim_post_job(post_id):
                try:
                    await log_error(post_id, error)
                finally:
                    await fail_post_job(post_id, error)
            return False

        self._items.append(QueueItem(id=post_id, params=params))
        logger.info(f"Post job queued: {post_id} ({len(self._items)} waiting)")

        if not self.is_draining:
            self._drain_task = asyncio.create_task(self._drain(), name="post-queue-drain")
        return True

    async def wait_until_idle(self):
        """Wait for the current drain to finish."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def stop(self):
        self._items.clear()
        if self._drain_task and not self._drain_task.done():
            self._drain_task.cancel()
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def _drain(self):
        try:
            while self._items:
                item = self._items.popleft()
                self._current_id = item.id
                try:
                    await self._run_item(item)
                except Exception as e:
                    logger.error(f"Post queue error for {item.id}: {e}", exc_info=True)
                finally:
                    self._current_id = None

                if self._items:
                    settings = await get_app_settings()
                    delay = float(settings["task_delay_seconds"])
                    logger.info(f"Waiting {delay:.0f}s before next post")
                    await self._sleep(delay)
        finally:
            self._current_id = None

    async def _run_item(self, item: QueueItem):
        if not await claim_post_job(item.id):
            logger.info(f"Post job {item.id} no longer pending, skipping")
            return

        await log_info(item.id, f"Posting started: {item.params.title}")

        async def on_progress(message: str, level: str):
            await write_job_log(item.id, message, level)

        publisher = self.publisher or get_publish_engine()
        try:
            result = await publisher.publish(ForumDestination(item.params), on_progress=on_progress)
        except Exception as e:
            error = str(e) or type(e).__name__
            try:
                await log_error(item.id, f"Posting failed: {error}")
            finally:
                await fail_post_job(item.id, error)
            return

        await log_info(item.id, f"Posting completed: {result.url}")
        await complete_post_job(item.id, result_msg=result.message, result_url=result.url)
