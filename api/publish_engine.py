"""
Publish dispatch over destination variants.

A destination is either a blog (published through the Blogger API) or
a forum gallery (published through the browser posting automaton).
`publish` picks the route from the destination's type.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from adapters.base import PostParams
from adapters.blogger import BloggerClient
from adapters.dcinside import DCInsideAdapter
from api.database import get_app_settings
from core.browser import get_browser_manager

logger = logging.getLogger(__name__)


@dataclass
class BlogDestination:
    title: str
    content_html: str
    labels: List[str] = field(default_factory=list)


@dataclass
class ForumDestination:
    params: PostParams


Destination = Union[BlogDestination, ForumDestination]


@dataclass
class PublishResult:
    url: Optional[str]
    message: str


class PublishEngine:
    """Routes each destination to the client that can publish it."""

    def __init__(
        self,
        blog_client_factory: Optional[Callable[[dict], BloggerClient]] = None,
        forum_adapter_factory: Optional[Callable[..., DCInsideAdapter]] = None,
    ):
        self.blog_client_factory = blog_client_factory or (
            lambda settings: BloggerClient(
                blog_id=settings.get("blogger_blog_id"),
                access_token=settings.get("blogger_access_token"),
            )
        )
        self.forum_adapter_factory = forum_adapter_factory or (
            lambda **kwargs: DCInsideAdapter(get_browser_manager(), **kwargs)
        )

    async def publish(self, destination: Destination, on_progress=None) -> PublishResult:
        settings = await get_app_settings()

        if isinstance(destination, BlogDestination):
            client = self.blog_client_factory(settings)
            post = await client.post(destination.title, destination.content_html, destination.labels)
            return PublishResult(url=post.url, message=f"Published to blog: {destination.title}")

        if isinstance(destination, ForumDestination):
            adapter = self.forum_adapter_factory(on_progress=on_progress)
            result = await adapter.post_article(
                destination.params,
                headless=not settings["show_browser_window"],
                image_upload_failure_action=settings["image_upload_failure_action"],
            )
            return PublishResult(url=result.url, message=result.message)

        raise TypeError(f"Unsupported destination: {type(destination).__name__}")


_engine: Optional[PublishEngine] = None


def get_publish_engine() -> PublishEngine:
    global _engine
    if _engine is None:
        _engine = PublishEngine()
    return _engine
