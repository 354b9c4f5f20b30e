"""
Unified Configuration Module for Scheduled Publisher

All process-level configuration settings are centralized here.
Import from this module: from api.config import config

Operator settings that can change while the process runs (browser window
visibility, inter-post delay, image upload failure policy, API keys) are
stored in the app_settings table; the values here are their defaults.
"""

import os
from typing import List, Optional
from dataclasses import dataclass, field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = _env_bool("DEBUG", "false")

    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])

    # === Scheduling ===
    SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", "true")
    JOB_POLL_INTERVAL_SECONDS: float = float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "10"))
    POST_POLL_INTERVAL_SECONDS: float = float(os.getenv("POST_POLL_INTERVAL_SECONDS", "60"))

    # === Posting automaton: retry ceilings ===
    RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "1.0"))
    NAVIGATION_MAX_ATTEMPTS: int = int(os.getenv("NAVIGATION_MAX_ATTEMPTS", "3"))
    CHALLENGE_MAX_ATTEMPTS: int = int(os.getenv("CHALLENGE_MAX_ATTEMPTS", "3"))
    CHALLENGE_SOLVE_ATTEMPTS: int = int(os.getenv("CHALLENGE_SOLVE_ATTEMPTS", "3"))
    APPLY_MAX_ATTEMPTS: int = int(os.getenv("APPLY_MAX_ATTEMPTS", "10"))

    # === Posting automaton: timeouts ===
    PAGE_LOAD_TIMEOUT_MS: int = int(os.getenv("PAGE_LOAD_TIMEOUT_MS", "20000"))
    ELEMENT_TIMEOUT_MS: int = int(os.getenv("ELEMENT_TIMEOUT_MS", "10000"))
    POPUP_TIMEOUT_MS: int = int(os.getenv("POPUP_TIMEOUT_MS", "10000"))
    UPLOAD_TIMEOUT_SECONDS: float = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "60"))
    DIALOG_WAIT_SECONDS: float = float(os.getenv("DIALOG_WAIT_SECONDS", "8"))
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv("NAVIGATION_TIMEOUT_MS", "10000"))
    LANDING_TIMEOUT_MS: int = int(os.getenv("LANDING_TIMEOUT_MS", "15000"))
    WRITE_PAGE_SETTLE_SECONDS: float = float(os.getenv("WRITE_PAGE_SETTLE_SECONDS", "4.0"))

    # === Human-like Delays ===
    MIN_HUMAN_DELAY: float = float(os.getenv("MIN_HUMAN_DELAY", "0.3"))
    MAX_HUMAN_DELAY: float = float(os.getenv("MAX_HUMAN_DELAY", "1.0"))
    MIN_TYPING_DELAY_MS: int = int(os.getenv("MIN_TYPING_DELAY_MS", "30"))
    MAX_TYPING_DELAY_MS: int = int(os.getenv("MAX_TYPING_DELAY_MS", "120"))

    # === Operator setting defaults (overridable via /settings/app) ===
    SHOW_BROWSER_WINDOW: bool = _env_bool("SHOW_BROWSER_WINDOW", "true")
    TASK_DELAY_SECONDS: float = float(os.getenv("TASK_DELAY_SECONDS", "10"))
    IMAGE_UPLOAD_FAILURE_ACTION: str = os.getenv("IMAGE_UPLOAD_FAILURE_ACTION", "fail")

    # === Browser ===
    BROWSER_EXECUTABLE_PATH: Optional[str] = os.getenv("BROWSER_EXECUTABLE_PATH")
    BROWSER_LOCALE: str = os.getenv("BROWSER_LOCALE", "ko-KR")
    ACCEPT_LANGUAGE: str = os.getenv("ACCEPT_LANGUAGE", "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7")

    # === API Keys ===
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    MODEL_NAME: str = os.getenv("MODEL_NAME", "gpt-4o")
    CAPTCHA_PROVIDER: str = os.getenv("CAPTCHA_PROVIDER", "openai")
    TWOCAPTCHA_API_KEY: Optional[str] = os.getenv("TWOCAPTCHA_API_KEY")
    BLOGGER_BLOG_ID: Optional[str] = os.getenv("BLOGGER_BLOG_ID")
    BLOGGER_ACCESS_TOKEN: Optional[str] = os.getenv("BLOGGER_ACCESS_TOKEN")

    # === AI Service ===
    AI_MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "3"))
    AI_TIMEOUT_SECONDS: int = int(os.getenv("AI_TIMEOUT_SECONDS", "60"))

    # === Paths ===
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    COOKIE_DIR: str = os.getenv("COOKIE_DIR", "./data/cookies")

    def validate(self) -> List[str]:
        """Validate configuration and return list of problems."""
        problems = []

        if self.IMAGE_UPLOAD_FAILURE_ACTION not in ("fail", "skip"):
            problems.append("IMAGE_UPLOAD_FAILURE_ACTION must be 'fail' or 'skip'")

        if self.CAPTCHA_PROVIDER == "2captcha" and not self.TWOCAPTCHA_API_KEY:
            problems.append("TWOCAPTCHA_API_KEY")

        for name in ("NAVIGATION_MAX_ATTEMPTS", "CHALLENGE_MAX_ATTEMPTS", "CHALLENGE_SOLVE_ATTEMPTS"):
            if getattr(self, name) < 1:
                problems.append(f"{name} must be >= 1")

        return problems


# Global config instance
config = AppConfig()
