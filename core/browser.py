#!/usr/bin/env python3
"""
Browser Session Module

Launches local Chromium through Playwright, one isolated browser per
session. Sessions are never shared between posts: the posting automaton
creates one, drives it, and closes it in its teardown step.

Example:
    from core.browser import BrowserManager

    manager = BrowserManager()
    session = await manager.create_session("dcinside", headless=True)
    await session.page.goto("https://gall.dcinside.com")
    await manager.close_session(session.session_id)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from api.config import config
from api.logging_config import log_browser_event

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
]


@dataclass
class BrowserSession:
    """Represents an active browser session."""
    session_id: str
    page: Page
    context: BrowserContext
    browser: Optional[Browser] = None
    playwright: Optional[Playwright] = None
    created_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class BrowserManager:
    """
    Local Playwright browser manager.

    Each call to create_session starts its own Playwright driver and
    Chromium instance so a crashed post cannot leak state into the next.
    """

    def __init__(
        self,
        executable_path: Optional[str] = None,
        locale: Optional[str] = None,
        accept_language: Optional[str] = None,
    ):
        self.executable_path = executable_path or config.BROWSER_EXECUTABLE_PATH
        self.locale = locale or config.BROWSER_LOCALE
        self.accept_language = accept_language or config.ACCEPT_LANGUAGE
        self._sessions: Dict[str, BrowserSession] = {}

    def _launch_args(self) -> List[str]:
        language = self.locale.split("-")[0]
        return [*DEFAULT_LAUNCH_ARGS, f"--lang={self.locale},{language}"]

    async def create_session(self, platform: str = "generic", headless: bool = True) -> BrowserSession:
        """
        Launch a browser and open a page.

        Args:
            platform: Platform identifier for metadata
            headless: Run without a visible window

        Returns:
            BrowserSession instance
        """
        session_id = f"{platform}_{uuid.uuid4().hex[:10]}"
        playwright = await async_playwright().start()
        try:
            launch_options: Dict[str, Any] = {"headless": headless, "args": self._launch_args()}
            if self.executable_path:
                launch_options["executable_path"] = self.executable_path
            browser = await playwright.chromium.launch(**launch_options)
            context = await browser.new_context(
                locale=self.locale,
                viewport={"width": 1280, "height": 900},
            )
            await context.set_extra_http_headers({"accept-language": self.accept_language})
            page = await context.new_page()
        except Exception as e:
            logger.error(f"Failed to create session: {e}")
            await playwright.stop()
            raise

        session = BrowserSession(
            session_id=session_id,
            page=page,
            context=context,
            browser=browser,
            playwright=playwright,
            metadata={"platform": platform, "headless": headless},
        )
        self._sessions[session_id] = session
        log_browser_event(session_id, "created", f"platform={platform} headless={headless}")
        return session

    async def close_session(self, session_id: str):
        """Close a specific session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        try:
            if session.browser:
                await session.browser.close()
            if session.playwright:
                await session.playwright.stop()
            log_browser_event(session_id, "closed")
        except Exception as e:
            logger.error(f"Error closing session {session_id}: {e}")

    async def close_all(self):
        """Close all active sessions."""
        for session_id in list(self._sessions.keys()):
            await self.close_session(session_id)
        logger.info("All browser sessions closed")

    def get_stats(self) -> Dict[str, Any]:
        """Get browser manager statistics."""
        return {
            "active_sessions": len(self._sessions),
            "session_ids": list(self._sessions.keys()),
        }


# Singleton instance
_browser_manager: Optional[BrowserManager] = None


def get_browser_manager() -> BrowserManager:
    """Get or create singleton browser manager instance."""
    global _browser_manager
    if _browser_manager is None:
        _browser_manager = BrowserManager()
    return _browser_manager

