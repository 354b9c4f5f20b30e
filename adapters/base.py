"""
Base posting adapter.

PostingAdapter.post_article runs the fixed step sequence shared by every
browser-driven destination:

    init -> authenticate -> navigate -> fill form -> upload assets
         -> challenge/submit -> verify landing -> extract result URL

with the browser session torn down exactly once on every path.
Subclasses implement the individual steps.

Usage:
    class ExampleBoardAdapter(PostingAdapter):
        PLATFORM = "example"

        async def _navigate_to_write_page(self, params):
            await self.page.goto(params.gallery_url + "/write")
        ...
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from api.config import config
from .errors import AssetUploadError, BrowserLaunchError, PostingError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}

IMAGE_POLICY_FAIL = "fail"
IMAGE_POLICY_SKIP = "skip"

ProgressCallback = Callable[[str, str], Awaitable[None]]


@dataclass
class PostParams:
    """Everything needed to publish one post to a forum gallery."""
    gallery_url: str
    title: str
    content_html: str
    password: Optional[str] = None
    nickname: Optional[str] = None
    headtext: Optional[str] = None
    image_paths: List[str] = field(default_factory=list)
    login_id: Optional[str] = None
    login_password: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "PostParams":
        """Build params from a post_jobs row (or any dict with the same keys)."""
        return cls(
            gallery_url=row["gallery_url"],
            title=row["title"],
            content_html=row["content_html"],
            password=row.get("password") or None,
            nickname=row.get("nickname") or None,
            headtext=row.get("headtext") or None,
            image_paths=list(row.get("image_paths") or []),
            login_id=row.get("login_id") or None,
            login_password=row.get("login_password") or None,
        )


@dataclass
class PostResult:
    """Result of a successful post."""
    success: bool
    message: str = ""
    url: Optional[str] = None
    skipped_assets: bool = False


def validate_image_paths(paths: List[str]) -> List[str]:
    """Return a problem string per unusable image path."""
    problems = []
    for raw in paths:
        path = Path(raw)
        if not path.is_file():
            problems.append(f"Image file not found: {raw}")
        elif path.suffix.lower() not in ALLOWED_IMAGE_EXTENSIONS:
            problems.append(f"Unsupported image type: {raw}")
    return problems


def validate_post_params(params: PostParams) -> List[str]:
    """Return a list of validation problems; empty means the params are usable."""
    problems = []
    if not (params.gallery_url or "").startswith(("http://", "https://")):
        problems.append("gallery_url must be an http(s) URL")
    if not (params.title or "").strip():
        problems.append("title is required")
    if not (params.content_html or "").strip():
        problems.append("content_html is required")
    if not params.password:
        problems.append("password is required")
    problems.extend(validate_image_paths(params.image_paths))
    return problems


@dataclass
class AdapterConfig:
    """Timeouts and retry ceilings for a posting adapter."""
    retry_base_delay: float = config.RETRY_BASE_DELAY_SECONDS
    navigation_max_attempts: int = config.NAVIGATION_MAX_ATTEMPTS
    challenge_max_attempts: int = config.CHALLENGE_MAX_ATTEMPTS
    challenge_solve_attempts: int = config.CHALLENGE_SOLVE_ATTEMPTS
    apply_max_attempts: int = config.APPLY_MAX_ATTEMPTS

    page_load_timeout: int = config.PAGE_LOAD_TIMEOUT_MS
    element_timeout: int = config.ELEMENT_TIMEOUT_MS
    popup_timeout: int = config.POPUP_TIMEOUT_MS
    upload_timeout: float = config.UPLOAD_TIMEOUT_SECONDS
    dialog_wait: float = config.DIALOG_WAIT_SECONDS
    navigation_timeout: int = config.NAVIGATION_TIMEOUT_MS
    landing_timeout: int = config.LANDING_TIMEOUT_MS
    write_page_settle: float = config.WRITE_PAGE_SETTLE_SECONDS


class PostingAdapter(ABC):
    """
    Abstract base class for browser-driven posting destinations.

    Subclasses define PLATFORM and the step methods. post_article owns the
    session lifecycle; steps use self.page / self.context.
    """

    PLATFORM: str = "unknown"

    def __init__(
        self,
        browser_manager,
        config: Optional[AdapterConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.browser_manager = browser_manager
        self.config = config or AdapterConfig()
        self.on_progress = on_progress

        # Session state
        self.session = None
        self.page = None
        self.context = None
        self.step_counter = 0

    # ========================================================================
    # Main posting flow
    # ========================================================================

    async def post_article(
        self,
        params: PostParams,
        headless: bool = True,
        image_upload_failure_action: str = IMAGE_POLICY_FAIL,
    ) -> PostResult:
        """
        Publish one post.

        Returns a PostResult on success; every failure raises a PostingError
        subclass whose message is suitable for storing on the job.
        """
        self.step_counter = 0
        skipped_assets = False

        try:
            await self._create_session(headless)

            if params.login_id:
                await self._step("authenticate", self._authenticate, params)

            await self._step("navigate", self._navigate_to_write_page, params)
            await self._step("fill_form", self._fill_form, params)

            if params.image_paths:
                try:
                    await self._step("upload_assets", self._upload_assets, params.image_paths)
                except AssetUploadError as e:
                    if image_upload_failure_action != IMAGE_POLICY_SKIP:
                        raise
                    skipped_assets = True
                    await self._progress(f"{e.message}; continuing without images", "warn")

            await self._step("submit", self._submit_with_challenge, params)
            await self._step("verify_landing", self._verify_landing, params)

            url = await self._extract_result_url(params)
            message = "Post published"
            if skipped_assets:
                message = "Post published without images"
            return PostResult(success=True, message=message, url=url, skipped_assets=skipped_assets)

        finally:
            await self._cleanup()

    # ========================================================================
    # Steps (override in subclass)
    # ========================================================================

    async def _authenticate(self, params: PostParams):
        """Restore a logged-in session. Default: nothing to do."""

    @abstractmethod
    async def _navigate_to_write_page(self, params: PostParams):
        raise NotImplementedError

    @abstractmethod
    async def _fill_form(self, params: PostParams):
        raise NotImplementedError

    @abstractmethod
    async def _upload_assets(self, image_paths: List[str]):
        raise NotImplementedError

    @abstractmethod
    async def _submit_with_challenge(self, params: PostParams):
        raise NotImplementedError

    @abstractmethod
    async def _verify_landing(self, params: PostParams):
        raise NotImplementedError

    async def _extract_result_url(self, params: PostParams) -> Optional[str]:
        return self.page.url if self.page else None

    # ========================================================================
    # Session + helpers
    # ========================================================================

    async def _create_session(self, headless: bool):
        """Create browser session."""
        try:
            self.session = await self.browser_manager.create_session(
                platform=self.PLATFORM, headless=headless
            )
        except Exception as e:
            raise BrowserLaunchError(f"Browser launch failed: {e}") from e
        self.page = self.session.page
        self.context = self.session.context

    async def _cleanup(self):
        """Clean up browser session."""
        if self.session:
            session_id = self.session.session_id
            self.session = None
            self.page = None
            self.context = None
            await self.browser_manager.close_session(session_id)

    async def _step(self, label: str, func, *args, **kwargs) -> Any:
        """Execute a step with progress logging."""
        self.step_counter += 1
        logger.info(f"[{self.PLATFORM}] Step {self.step_counter}: {label}")
        try:
            return await func(*args, **kwargs)
        except PostingError as e:
            logger.warning(f"[{self.PLATFORM}] Step {label} failed: {e.message}")
            raise
        except Exception as e:
            logger.error(f"[{self.PLATFORM}] Step {label} crashed: {e}", exc_info=True)
            first_line = str(e).splitlines()[0] if str(e) else type(e).__name__
            raise PostingError(f"{label} failed: {first_line}") from e

    async def _progress(self, message: str, level: str = "info"):
        if level == "warn":
            logger.warning(f"[{self.PLATFORM}] {message}")
        else:
            logger.info(f"[{self.PLATFORM}] {message}")
        if self.on_progress:
            await self.on_progress(message, level)
