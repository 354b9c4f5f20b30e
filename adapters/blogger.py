"""
Blogger v3 REST client.

Publishes generated HTML posts with an OAuth access token obtained
elsewhere (token exchange is not handled here).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import aiohttp

from api.config import config
from core.retry import BackoffMode, RetryConfig, retry_async

logger = logging.getLogger(__name__)

BLOGGER_API_URL = "https://www.googleapis.com/blogger/v3"


class BlogPublishError(Exception):
    """The blog API rejected the post or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class _RetryableBlogError(BlogPublishError):
    pass


@dataclass
class BlogPost:
    url: str
    id: str
    title: str = ""
    labels: List[str] = field(default_factory=list)


class BloggerClient:
    """Blogger API client for one blog."""

    def __init__(
        self,
        blog_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_url: str = BLOGGER_API_URL,
        timeout: int = 30,
    ):
        self.blog_id = blog_id or config.BLOGGER_BLOG_ID
        self.access_token = access_token or config.BLOGGER_ACCESS_TOKEN
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    async def post(self, title: str, html: str, labels: Optional[List[str]] = None) -> BlogPost:
        """
        Create a live post.

        Raises:
            BlogPublishError: missing credentials, API rejection, or transport failure
        """
        if not self.blog_id or not self.access_token:
            raise BlogPublishError("Blogger blog id and access token must be configured")

        body = {
            "kind": "blogger#post",
            "title": title,
            "content": html,
            "labels": list(labels or []),
        }

        try:
            data = await retry_async(
                self._insert,
                body,
                config=RetryConfig(max_attempts=3, base_delay_seconds=2.0, mode=BackoffMode.EXPONENTIAL),
                retry_on=(aiohttp.ClientError, asyncio.TimeoutError, _RetryableBlogError),
                operation="blogger insert",
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlogPublishError(f"Blogger API unreachable: {e}") from e

        logger.info(f"Blog post created: {data.get('url')}")
        return BlogPost(
            url=data.get("url", ""),
            id=str(data.get("id", "")),
            title=data.get("title", title),
            labels=data.get("labels", []),
        )

    async def _insert(self, body: dict) -> dict:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.api_url}/blogs/{self.blog_id}/posts/",
                headers={"Authorization": f"Bearer {self.access_token}"},
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                data = await resp.json(content_type=None)
                if resp.status == 401:
                    raise BlogPublishError("Blogger API authentication failed", status=resp.status)
                if resp.status >= 500 or resp.status == 429:
                    raise _RetryableBlogError(f"Blogger API error {resp.status}", status=resp.status)
                if resp.status >= 400:
                    message = ((data or {}).get("error") or {}).get("message", "unknown error")
                    raise BlogPublishError(f"Blogger API rejected post: {message}", status=resp.status)
                return data or {}
