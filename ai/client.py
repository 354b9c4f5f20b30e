#!/usr/bin/env python3
"""
OpenAI-compatible chat completions client.

Single entry point for every model call in the publisher: content
generation, topic generation, and vision-based challenge reading.

Example:
    from ai.client import OpenAIClient

    ai = OpenAIClient(api_key="sk-...")
    response = await ai.complete([{"role": "user", "content": "Hello"}])
    data = await ai.complete_json([...])
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from api.config import config
from core.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """The model endpoint failed or returned an unusable response."""


@dataclass
class AIResponse:
    """Response from AI service."""
    success: bool
    content: str
    error: Optional[str] = None
    tokens_used: Optional[int] = None
    duration_ms: float = 0.0


def parse_json_content(content: str) -> Any:
    """Parse JSON from a model reply, tolerating markdown fences and prose around it."""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        if "```json" in content:
            json_str = content.split("```json")[1].split("```")[0]
        elif "```" in content:
            json_str = content.split("```")[1].split("```")[0]
        else:
            start = min((i for i in (content.find("{"), content.find("[")) if i >= 0), default=-1)
            end = max(content.rfind("}"), content.rfind("]")) + 1
            json_str = content[start:end] if start >= 0 and end > start else ""
        try:
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            raise AIServiceError(f"Model reply is not valid JSON: {e}") from e


class OpenAIClient:
    """Thin aiohttp client for /chat/completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key or config.OPENAI_API_KEY
        self.model = model or config.MODEL_NAME
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.max_retries = max_retries or config.AI_MAX_RETRIES
        self.timeout = timeout or config.AI_TIMEOUT_SECONDS

        if not self.api_key:
            logger.warning("OpenAI API key not set")

    async def _request(self, payload: Dict[str, Any]) -> AIResponse:
        start_time = time.monotonic()
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                data = await response.json(content_type=None)

        if "choices" not in data:
            error = (data.get("error") or {}).get("message", "Unknown error")
            raise AIServiceError(error)

        content = data["choices"][0]["message"].get("content") or ""
        if not content:
            raise AIServiceError("Empty model response")

        return AIResponse(
            success=True,
            content=content,
            tokens_used=(data.get("usage") or {}).get("total_tokens"),
            duration_ms=(time.monotonic() - start_time) * 1000,
        )

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> AIResponse:
        """
        Get a completion, retrying transport and API errors.

        Raises:
            AIServiceError: when every attempt failed
        """
        if not self.api_key:
            raise AIServiceError("OpenAI API key is not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            return await retry_async(
                self._request,
                payload,
                config=RetryConfig(max_attempts=self.max_retries, base_delay_seconds=1.0),
                retry_on=(aiohttp.ClientError, asyncio.TimeoutError, AIServiceError),
                operation="chat completion",
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AIServiceError(str(e)) from e

    async def complete_json(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> Any:
        """Completion parsed as JSON."""
        response = await self.complete(messages, temperature=temperature, max_tokens=max_tokens, json_mode=True)
        return parse_json_content(response.content)


async def get_ai_client() -> OpenAIClient:
    """Client configured from the current operator settings."""
    from api.database import get_app_settings

    settings = await get_app_settings()
    return OpenAIClient(api_key=settings.get("openai_api_key"))
