"""
CAPTCHA Solving Service
Reads image challenges for the posting automaton.

Providers:
- openai: vision model over the chat completions API
- 2captcha: human-backed base64 image solving
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ai.client import AIServiceError, OpenAIClient, parse_json_content
from api.config import config

CHALLENGE_SYSTEM_PROMPT = (
    'You are a CAPTCHA solver that ONLY responds with JSON format: { "answer": "captcha_text" }. '
    "Never provide explanations or additional text."
)

CHALLENGE_USER_PROMPT = """This image is a CAPTCHA.
Rules:
- It contains only lowercase letters (a-z) and digits (0-9)
- It never contains uppercase letters
- It has no special characters or spaces
- It is usually 4-6 characters long

Read the image exactly and reply ONLY in this JSON format:
{ "answer": "text" }"""

_ANSWER_PATTERN = re.compile(r"[a-z0-9]+")


class ChallengeSolveError(Exception):
    """The challenge service could not produce an answer."""


@dataclass
class ChallengeAnswer:
    answer: str


@dataclass
class CaptchaResult:
    """Result of CAPTCHA solving attempt."""
    success: bool
    solution: Optional[str] = None
    solve_time_seconds: float = 0.0
    error_message: Optional[str] = None
    provider: str = ""


def normalize_answer(raw: str) -> Optional[str]:
    answer = (raw or "").strip().lower()
    if not _ANSWER_PATTERN.fullmatch(answer):
        return None
    return answer


class CaptchaSolver:
    """Unified image challenge solving interface."""

    def __init__(
        self,
        provider: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        twocaptcha_api_key: Optional[str] = None,
    ):
        self.provider = (provider or config.CAPTCHA_PROVIDER).lower()
        self.openai_api_key = openai_api_key or config.OPENAI_API_KEY
        self.twocaptcha_api_key = twocaptcha_api_key or config.TWOCAPTCHA_API_KEY

    async def solve(self, image_base64: str) -> ChallengeAnswer:
        """
        Read a challenge image.

        Raises:
            ChallengeSolveError: provider failed or returned an unusable answer
        """
        if self.provider == "openai":
            result = await self._solve_openai(image_base64)
        elif self.provider == "2captcha":
            result = await self._solve_image_2captcha(image_base64, timeout=60)
        else:
            raise ChallengeSolveError(f"Provider {self.provider} not supported")

        if not result.success:
            raise ChallengeSolveError(result.error_message or "Unknown solver error")

        answer = normalize_answer(result.solution)
        if not answer:
            raise ChallengeSolveError(f"Unusable challenge answer: {result.solution!r}")
        return ChallengeAnswer(answer=answer)

    async def _solve_openai(self, image_base64: str) -> CaptchaResult:
        """Solve using a vision model."""
        if not self.openai_api_key:
            return CaptchaResult(success=False, error_message="OpenAI API key is not configured", provider="openai")

        start_time = time.time()
        client = OpenAIClient(api_key=self.openai_api_key, model=config.MODEL_NAME, max_retries=1)
        messages = [
            {"role": "system", "content": CHALLENGE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": CHALLENGE_USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image_base64}"}},
                ],
            },
        ]

        try:
            response = await client.complete(messages, temperature=0, max_tokens=50, json_mode=True)
            parsed = parse_json_content(response.content)
        except AIServiceError as e:
            return CaptchaResult(success=False, error_message=str(e), provider="openai")

        answer = parsed.get("answer") if isinstance(parsed, dict) else None
        if not isinstance(answer, str):
            return CaptchaResult(success=False, error_message="Response has no answer field", provider="openai")

        return CaptchaResult(
            success=True,
            solution=answer,
            solve_time_seconds=time.time() - start_time,
            provider="openai",
        )

    async def _solve_image_2captcha(self, image_base64: str, timeout: int) -> CaptchaResult:
        """Solve image CAPTCHA using 2captcha."""
        start_time = time.time()

        try:
            async with aiohttp.ClientSession() as session:
                submit_url = "http://2captcha.com/in.php"
                data = {
                    "key": self.twocaptcha_api_key,
                    "method": "base64",
                    "body": image_base64,
                    "json": 1
                }

                async with session.post(submit_url, data=data) as resp:
                    result = await resp.json(content_type=None)

                if result.get("status") != 1:
                    return CaptchaResult(
                        success=False,
                        error_message=f"Image CAPTCHA submit error: {result.get('request')}",
                        provider="2captcha"
                    )

                captcha_id = result["request"]
                result_url = f"http://2captcha.com/res.php?key={self.twocaptcha_api_key}&action=get&id={captcha_id}&json=1"

                for _ in range(timeout // 5):
                    await asyncio.sleep(5)

                    async with session.get(result_url) as resp:
                        result = await resp.json(content_type=None)

                    if result.get("status") == 1:
                        return CaptchaResult(
                            success=True,
                            solution=result["request"],
                            solve_time_seconds=time.time() - start_time,
                            provider="2captcha"
                        )

                    if result.get("request") != "CAPCHA_NOT_READY":
                        return CaptchaResult(
                            success=False,
                            error_message=f"2captcha error: {result.get('request')}",
                            provider="2captcha"
                        )

            return CaptchaResult(
                success=False,
                error_message="Image CAPTCHA timeout",
                provider="2captcha"
            )

        except aiohttp.ClientError as e:
            return CaptchaResult(
                success=False,
                error_message=str(e),
                provider="2captcha"
            )


async def get_captcha_solver() -> CaptchaSolver:
    """Solver configured from the current operator settings."""
    from api.database import get_app_settings

    settings = await get_app_settings()
    return CaptchaSolver(openai_api_key=settings.get("openai_api_key"))
