"""
DCInside gallery posting adapter.

Drives the gallery web UI end to end: restores a saved login, opens the
write page from the gallery list, fills the editor, uploads images
through the attachment popup, answers the kcaptcha challenge, submits,
and reads the new post's URL back from the gallery list.

Also hosts the interactive login flow that produces the saved cookies.
"""

import asyncio
import base64
import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError, Page

from api.captcha_solver import ChallengeSolveError, get_captcha_solver
from core.cookie_store import CookieStore, get_cookie_store
from core.human_actions import human_like_click, human_like_delay, human_like_type
from core.retry import BackoffMode, RetryConfig, retry_async
from .base import PostingAdapter, PostParams, validate_post_params
from .errors import (
    AssetUploadError,
    BrowserLaunchError,
    ChallengeFailedError,
    LandingNotObservedError,
    LoginRequiredError,
    SubmissionRejectedError,
    UIContractError,
    WritePageUnreachableError,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://gall.dcinside.com"
MAIN_URL = "https://dcinside.com/"

GALLERY_LIST_PATHS = {
    "board": "board/lists/",
    "mgallery": "mgallery/board/lists/",
    "mini": "mini/board/lists/",
    "person": "person/board/lists/",
}

# Dialog texts that mean the challenge answer was wrong, not that the post was refused.
CHALLENGE_ERROR_MESSAGES = (
    "자동입력 방지코드가 일치하지 않습니다.",
    "code은(는) 영문-숫자 조합이어야 합니다.",
)

_GALLERY_ID_PATTERN = re.compile(r"[?&]id=([^&#]+)")

_SELECT_HEADTEXT_JS = """
(headtext) => {
    const items = Array.from(document.querySelectorAll('.subject_list li'));
    if (headtext) {
        const target = items.find(
            li => li.getAttribute('data-val') === headtext || (li.textContent || '').trim() === headtext
        );
        if (target) {
            target.click();
            return headtext;
        }
    }
    if (items.length > 0) {
        items[0].click();
        return (items[0].textContent || '').trim() || items[0].getAttribute('data-val') || '';
    }
    return null;
}
"""

_SET_EDITOR_HTML_JS = """
(html) => {
    const textarea = document.querySelector('.note-codable');
    if (!textarea) return false;
    textarea.value = html;
    textarea.dispatchEvent(new Event('input', { bubbles: true }));
    return true;
}
"""

_FIND_POST_HREF_JS = """
(title) => {
    const rows = Array.from(document.querySelectorAll('table.gall_list tbody tr.ub-content'));
    for (const row of rows) {
        const link = row.querySelector('td.gall_tit.ub-word a');
        if (!link) continue;
        const text = (link.textContent || '').replace(/\\s+/g, ' ').trim();
        if (text === title) return link.getAttribute('href');
    }
    return null;
}
"""

_ALL_UPLOADS_READY_JS = """
() => Array.from(document.querySelectorAll('ul#sortable li')).every(li => li.hasAttribute('data-key'))
"""


@dataclass
class GalleryRef:
    """Gallery id and flavour parsed from a gallery URL."""
    gallery_id: str
    gallery_type: str

    @property
    def list_url(self) -> str:
        return f"{BASE_URL}/{GALLERY_LIST_PATHS[self.gallery_type]}?id={self.gallery_id}"


def parse_gallery_url(url: str) -> GalleryRef:
    """
    Extract the gallery id and type from any gallery URL.

    Raises:
        ValueError: the URL carries no id parameter
    """
    match = _GALLERY_ID_PATTERN.search(url or "")
    if not match:
        raise ValueError(f"Cannot extract gallery id from URL: {url}")

    if "/mgallery/" in url:
        gallery_type = "mgallery"
    elif "/mini/" in url:
        gallery_type = "mini"
    elif "/person/" in url:
        gallery_type = "person"
    else:
        gallery_type = "board"
    return GalleryRef(gallery_id=match.group(1), gallery_type=gallery_type)


def validate_dcinside_params(params: PostParams) -> List[str]:
    problems = validate_post_params(params)
    try:
        parse_gallery_url(params.gallery_url)
    except ValueError as e:
        problems.append(str(e))
    return problems


def is_challenge_error(dialog_message: str) -> bool:
    return any(text in dialog_message for text in CHALLENGE_ERROR_MESSAGES)


@dataclass
class LoginResult:
    success: bool
    message: str


class _NotOnWritePage(Exception):
    pass


class _PopupStillOpen(Exception):
    pass


class DCInsideAdapter(PostingAdapter):
    """Posting automaton for DCInside galleries."""

    PLATFORM = "dcinside"

    SELECTORS = {
        "write_button": "a.btn_write.txt",
        "title": "#subject",
        "headtext_items": ".subject_list li",
        "html_toggle": "#chk_html",
        "code_editor": ".note-codable",
        "nickname_display": "#gall_nick_name",
        "nickname_clear": "#btn_gall_nick_name_x",
        "nickname": "#name",
        "password": "#password",
        "image_button": 'button[aria-label="이미지"]',
        "file_input": "input.file_add",
        "upload_loading": ".loding_box",
        "upload_ready": "ul#sortable li[data-key]",
        "apply_button": ".btn_apply",
        "challenge_image": "#kcaptcha",
        "challenge_answer": "input[name=kcaptcha_code]",
        "submit": "button.btn_blue.btn_svc.write",
        "post_list": "table.gall_list",
        "login_box": "#login_box",
        "login_user_name": "#login_box .user_name",
        "login_id": "#user_id",
        "login_password": "#pw",
        "login_submit": "#login_ok",
    }

    def __init__(
        self,
        browser_manager,
        config=None,
        on_progress=None,
        challenge_solver=None,
        cookie_store: Optional[CookieStore] = None,
    ):
        super().__init__(browser_manager, config=config, on_progress=on_progress)
        self.challenge_solver = challenge_solver
        self.cookie_store = cookie_store or get_cookie_store()

    def _linear(self, attempts: int) -> RetryConfig:
        return RetryConfig(
            max_attempts=attempts,
            base_delay_seconds=self.config.retry_base_delay,
            mode=BackoffMode.LINEAR,
        )

    # ========================================================================
    # Authenticate
    # ========================================================================

    async def _authenticate(self, params: PostParams):
        cookies = self.cookie_store.load(self.PLATFORM, params.login_id)
        if not cookies:
            raise LoginRequiredError()

        await self.context.add_cookies(cookies)
        if not await self.is_logged_in(self.page):
            raise LoginRequiredError("Login required: saved session is no longer valid")
        await self._progress(f"Logged in as {params.login_id}")

    async def is_logged_in(self, page: Page) -> bool:
        """Probe the portal front page for the logged-in user marker."""
        try:
            await page.goto(MAIN_URL, wait_until="domcontentloaded", timeout=self.config.page_load_timeout)
            await page.wait_for_selector(self.SELECTORS["login_box"], timeout=self.config.element_timeout)
            return await page.locator(self.SELECTORS["login_user_name"]).count() > 0
        except PlaywrightError as e:
            logger.debug(f"Login probe failed: {e}")
            return False

    # ========================================================================
    # Navigate
    # ========================================================================

    async def _navigate_to_write_page(self, params: PostParams):
        try:
            gallery = parse_gallery_url(params.gallery_url)
        except ValueError as e:
            raise UIContractError("gallery id", str(e)) from e

        attempts = self.config.navigation_max_attempts
        try:
            await retry_async(
                self._open_write_page,
                gallery,
                config=self._linear(attempts),
                retry_on=(PlaywrightError, _NotOnWritePage),
                operation="open write page",
            )
        except (PlaywrightError, _NotOnWritePage) as e:
            raise WritePageUnreachableError(attempts) from e
        await self._progress("Write page opened")

    async def _open_write_page(self, gallery: GalleryRef):
        logger.info(f"Opening write page from {gallery.list_url} ({gallery.gallery_type} gallery)")
        await self.page.goto(gallery.list_url, wait_until="load", timeout=self.config.page_load_timeout)
        await self.page.wait_for_selector(self.SELECTORS["write_button"], timeout=self.config.element_timeout)
        await human_like_click(self.page, self.SELECTORS["write_button"])
        await asyncio.sleep(self.config.write_page_settle)

        if "/write" not in self.page.url:
            raise _NotOnWritePage(f"Still on {self.page.url}")

    # ========================================================================
    # Fill form
    # ========================================================================

    async def _require(self, selector_key: str, timeout: Optional[int] = None):
        selector = self.SELECTORS[selector_key]
        try:
            await self.page.wait_for_selector(selector, timeout=timeout or self.config.element_timeout)
        except PlaywrightError as e:
            raise UIContractError(selector, str(e).splitlines()[0]) from e

    async def _fill_form(self, params: PostParams):
        await self._require("title")
        await human_like_type(self.page, self.SELECTORS["title"], params.title)
        await human_like_delay()

        await self._select_headtext(params.headtext)
        await human_like_delay()

        await self._input_content(params.content_html)
        await human_like_delay()

        if params.nickname:
            await self._input_nickname(params.nickname)
            await human_like_delay()

        if params.password and await self.page.locator(self.SELECTORS["password"]).count() > 0:
            await human_like_type(self.page, self.SELECTORS["password"], str(params.password))

        await self._progress("Form filled")

    async def _select_headtext(self, headtext: Optional[str]):
        """Best-effort category selection; falls back to the first option."""
        try:
            await self.page.wait_for_selector(self.SELECTORS["headtext_items"], timeout=5000)
            selected = await self.page.evaluate(_SELECT_HEADTEXT_JS, headtext or "")
        except PlaywrightError as e:
            logger.warning(f"Headtext selection skipped: {e}")
            return

        if selected is None:
            logger.warning("Gallery has no headtext options")
        elif headtext and selected == headtext:
            logger.info(f"Headtext selected: {selected}")
        else:
            logger.info(f"Headtext '{headtext}' not found, using first option: {selected}")

    async def _input_content(self, content_html: str):
        await self._require("html_toggle")
        toggle = self.page.locator(self.SELECTORS["html_toggle"])

        if not await toggle.is_checked():
            await human_like_click(self.page, self.SELECTORS["html_toggle"])
            await asyncio.sleep(0.3)

        await self._require("code_editor", timeout=5000)
        if not await self.page.evaluate(_SET_EDITOR_HTML_JS, content_html):
            raise UIContractError(self.SELECTORS["code_editor"])
        await asyncio.sleep(0.3)

        if await toggle.is_checked():
            await human_like_click(self.page, self.SELECTORS["html_toggle"])
            await asyncio.sleep(0.3)

    async def _input_nickname(self, nickname: str):
        display = self.page.locator(self.SELECTORS["nickname_display"])
        if await display.count() == 0:
            return

        if await display.get_attribute("readonly") is not None:
            if await self.page.locator(self.SELECTORS["nickname_clear"]).count() > 0:
                await human_like_click(self.page, self.SELECTORS["nickname_clear"])
                await asyncio.sleep(0.3)

        await self.page.evaluate(
            "(selector) => { const el = document.querySelector(selector); if (el) el.removeAttribute('readonly'); }",
            self.SELECTORS["nickname_display"],
        )
        await human_like_click(self.page, self.SELECTORS["nickname"])
        await self.page.keyboard.press("Control+A")
        await human_like_type(self.page, self.SELECTORS["nickname"], nickname)

    # ========================================================================
    # Upload assets
    # ========================================================================

    async def _upload_assets(self, image_paths: List[str]):
        try:
            async with self.page.expect_popup(timeout=self.config.popup_timeout) as popup_info:
                await human_like_click(self.page, self.SELECTORS["image_button"])
            popup = await popup_info.value
        except PlaywrightError as e:
            raise AssetUploadError(f"image popup did not open ({str(e).splitlines()[0]})") from e

        try:
            await popup.wait_for_selector(self.SELECTORS["file_input"], timeout=self.config.element_timeout)
            await asyncio.sleep(2)
            await popup.set_input_files(self.SELECTORS["file_input"], image_paths)
            await self._progress(f"Uploading {len(image_paths)} image(s)")

            await self._wait_for_uploads(popup, len(image_paths))
            await self._apply_uploads(popup)
        except PlaywrightError as e:
            raise AssetUploadError(str(e).splitlines()[0]) from e
        finally:
            if not popup.is_closed():
                await popup.close()

        await self._progress("Images attached")

    async def _wait_for_uploads(self, popup: Page, expected: int):
        deadline = time.monotonic() + self.config.upload_timeout
        ready = 0

        while time.monotonic() < deadline:
            if await popup.locator(self.SELECTORS["upload_loading"]).count() > 0:
                await asyncio.sleep(2)
                continue

            ready = await popup.locator(self.SELECTORS["upload_ready"]).count()
            logger.debug(f"Uploaded images: {ready}/{expected}")
            if ready >= expected and await popup.evaluate(_ALL_UPLOADS_READY_JS):
                await asyncio.sleep(2)
                return
            await asyncio.sleep(1)

        raise AssetUploadError(
            f"uploads not ready after {self.config.upload_timeout:.0f}s ({ready}/{expected})"
        )

    async def _apply_uploads(self, popup: Page):
        try:
            await retry_async(
                self._click_apply,
                popup,
                config=self._linear(self.config.apply_max_attempts),
                retry_on=(PlaywrightError, _PopupStillOpen),
                operation="apply images",
            )
        except (PlaywrightError, _PopupStillOpen) as e:
            raise AssetUploadError("apply button did not close the popup") from e

    async def _click_apply(self, popup: Page):
        if popup.is_closed():
            return
        await popup.wait_for_selector(self.SELECTORS["apply_button"], timeout=5000)
        await human_like_click(popup, self.SELECTORS["apply_button"])
        await asyncio.sleep(1)
        if not popup.is_closed():
            raise _PopupStillOpen()

    # ========================================================================
    # Challenge + submit
    # ========================================================================

    async def _submit_with_challenge(self, params: PostParams):
        rejected = 0
        while True:
            await self._solve_challenge()
            dialog_message = await self._click_submit_and_watch()

            if dialog_message is None:
                await self._progress("Post submitted")
                return

            if not is_challenge_error(dialog_message):
                raise SubmissionRejectedError(dialog_message)

            rejected += 1
            await self._progress(
                f"Challenge answer rejected ({rejected}/{self.config.challenge_max_attempts})", "warn"
            )
            if rejected >= self.config.challenge_max_attempts:
                raise ChallengeFailedError(rejected)

            await self._refresh_challenge()
            await asyncio.sleep(1)

    async def _solve_challenge(self) -> bool:
        """Answer the challenge if the form shows one. Returns False when there is none."""
        image = self.page.locator(self.SELECTORS["challenge_image"])
        if await image.count() == 0:
            return False

        image_base64 = base64.b64encode(await image.first.screenshot()).decode("ascii")
        solver = self.challenge_solver or await get_captcha_solver()
        attempts = self.config.challenge_solve_attempts
        try:
            result = await retry_async(
                solver.solve,
                image_base64,
                config=self._linear(attempts),
                retry_on=(ChallengeSolveError,),
                operation="solve challenge",
            )
        except ChallengeSolveError as e:
            raise ChallengeFailedError(attempts) from e

        answer_field = self.SELECTORS["challenge_answer"]
        await self._require("challenge_answer")
        await self.page.fill(answer_field, "")
        await human_like_type(self.page, answer_field, result.answer)
        return True

    async def _click_submit_and_watch(self) -> Optional[str]:
        """
        Click submit and wait for either an alert dialog or a navigation.

        Returns the dialog text, or None when no dialog appeared within the
        dialog window (navigation finishing first also counts as none).
        """
        loop = asyncio.get_running_loop()
        dialog_message: asyncio.Future = loop.create_future()

        async def on_dialog(dialog):
            message = dialog.message
            try:
                await dialog.accept()
            except PlaywrightError as e:
                logger.debug(f"Dialog already handled: {e}")
            if not dialog_message.done():
                dialog_message.set_result(message)

        self.page.on("dialog", on_dialog)
        navigation = asyncio.ensure_future(self._wait_for_navigation(self.config.navigation_timeout))
        try:
            await self.page.click(self.SELECTORS["submit"])
            await asyncio.wait(
                {dialog_message, navigation},
                timeout=self.config.dialog_wait,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            navigation.cancel()
            await asyncio.gather(navigation, return_exceptions=True)
            self.page.remove_listener("dialog", on_dialog)

        if dialog_message.done():
            return dialog_message.result()
        dialog_message.cancel()
        return None

    async def _wait_for_navigation(self, timeout: int) -> bool:
        try:
            await self.page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame == self.page.main_frame,
                timeout=timeout,
            )
            return True
        except PlaywrightError:
            return False

    async def _refresh_challenge(self):
        try:
            await self.page.evaluate(
                "(selector) => { const img = document.querySelector(selector); if (img) img.click(); }",
                self.SELECTORS["challenge_image"],
            )
        except PlaywrightError as e:
            logger.debug(f"Challenge refresh failed: {e}")

    # ========================================================================
    # Verify landing + result URL
    # ========================================================================

    async def _verify_landing(self, params: PostParams):
        list_url = parse_gallery_url(params.gallery_url).list_url
        timeout = self.config.landing_timeout

        observed = await self._first_signal([
            self.page.wait_for_function(
                "(expected) => location.href.includes('/lists') || location.href.includes(expected)",
                arg=list_url,
                timeout=timeout,
            ),
            self.page.wait_for_selector(self.SELECTORS["post_list"], timeout=timeout),
            self._wait_for_navigation(timeout),
        ])
        if not observed:
            raise LandingNotObservedError(f"no list page within {timeout / 1000:.0f}s")

    async def _first_signal(self, waiters) -> bool:
        """True as soon as any waiter completes without error."""
        tasks = [asyncio.ensure_future(w) for w in waiters]
        try:
            for finished in asyncio.as_completed(tasks):
                try:
                    if await finished is not False:
                        return True
                except PlaywrightError as e:
                    logger.debug(f"Landing signal failed: {e}")
            return False
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _extract_result_url(self, params: PostParams) -> Optional[str]:
        href = None
        try:
            await self.page.wait_for_selector(self.SELECTORS["post_list"], timeout=self.config.element_timeout)
            href = await self.page.evaluate(_FIND_POST_HREF_JS, params.title)
        except PlaywrightError as e:
            logger.warning(f"Could not read post list, using current URL: {e}")

        if href:
            return urljoin(f"{BASE_URL}/", href)
        return self.page.url

    # ========================================================================
    # Login flow
    # ========================================================================

    async def login(self, login_id: str, password: str, headless: bool = True) -> LoginResult:
        """Log in interactively and save the session cookies for later posts."""
        try:
            await self._create_session(headless)
            page = self.page

            await page.goto(MAIN_URL, wait_until="domcontentloaded", timeout=self.config.page_load_timeout)
            await page.wait_for_selector(self.SELECTORS["login_id"], timeout=self.config.element_timeout)
            await human_like_type(page, self.SELECTORS["login_id"], login_id)
            await human_like_type(page, self.SELECTORS["login_password"], password)
            await page.click(self.SELECTORS["login_submit"])
            await asyncio.sleep(2)

            if not await self.is_logged_in(page):
                return LoginResult(success=False, message="Login failed")

            cookies = await self.context.cookies()
            self.cookie_store.save(self.PLATFORM, login_id, cookies)
            return LoginResult(success=True, message="Login succeeded")

        except BrowserLaunchError as e:
            return LoginResult(success=False, message=e.message)
        except PlaywrightError as e:
            logger.error(f"Login failed: {e}")
            return LoginResult(success=False, message=str(e).splitlines()[0])
        finally:
            await self._cleanup()
