"""
Saved browser cookies, one JSON file per (platform, login id).

Posting sessions only read these files; the login flow is the only writer.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from api.config import config

logger = logging.getLogger(__name__)


class CookieStore:
    """File-backed cookie storage."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or config.COOKIE_DIR)

    def _path(self, platform: str, login_id: str) -> Path:
        safe_login = re.sub(r"[^A-Za-z0-9_.-]", "_", login_id)
        return self.base_dir / f"{platform}_{safe_login}.json"

    def load(self, platform: str, login_id: str) -> Optional[List[Dict[str, Any]]]:
        """Return saved cookies, or None when nothing usable is stored."""
        path = self._path(platform, login_id)
        if not path.exists():
            return None
        try:
            cookies = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable cookie file {path}: {e}")
            return None
        return cookies or None

    def save(self, platform: str, login_id: str, cookies: List[Dict[str, Any]]) -> Path:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(platform, login_id)
        path.write_text(json.dumps(cookies, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info(f"Saved {len(cookies)} cookies for {platform}/{login_id}")
        return path

    def delete(self, platform: str, login_id: str) -> bool:
        path = self._path(platform, login_id)
        if path.exists():
            path.unlink()
            return True
        return False


_cookie_store: Optional[CookieStore] = None


def get_cookie_store() -> CookieStore:
    global _cookie_store
    if _cookie_store is None:
        _cookie_store = CookieStore()
    return _cookie_store
