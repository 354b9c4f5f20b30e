"""
Publishing Destination Adapters
Drive external destinations that accept generated content.

- DCInsideAdapter: forum gallery posts via browser automation
- BloggerClient: blog posts via the Blogger v3 REST API
"""

from .errors import (
    FailureKind,
    PostingError,
    BrowserLaunchError,
    LoginRequiredError,
    WritePageUnreachableError,
    UIContractError,
    AssetUploadError,
    ChallengeFailedError,
    SubmissionRejectedError,
    LandingNotObservedError,
)
from .base import PostParams, PostResult, PostingAdapter, validate_post_params
from .dcinside import DCInsideAdapter, GalleryRef, parse_gallery_url
from .blogger import BloggerClient, BlogPost, BlogPublishError

__all__ = [
    "FailureKind",
    "PostingError",
    "BrowserLaunchError",
    "LoginRequiredError",
    "WritePageUnreachableError",
    "UIContractError",
    "AssetUploadError",
    "ChallengeFailedError",
    "SubmissionRejectedError",
    "LandingNotObservedError",
    "PostParams",
    "PostResult",
    "PostingAdapter",
    "validate_post_params",
    "DCInsideAdapter",
    "GalleryRef",
    "parse_gallery_url",
    "BloggerClient",
    "BlogPost",
    "BlogPublishError",
]
