#!/usr/bin/env python3
"""
AI content and topic generation.

ContentGenerator turns a title and a short brief into a blog post in two
passes: an outline of sections, then HTML for every section. The
sections are joined in outline order.

TopicGenerator proposes SEO-friendly post titles for a subject.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ai.client import AIServiceError, OpenAIClient

logger = logging.getLogger(__name__)


class ContentGenerationError(Exception):
    """Content or topic generation failed."""


@dataclass
class OutlineSection:
    index: int
    title: str
    summary: str
    length: str = ""


@dataclass
class Topic:
    title: str
    content: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "content": self.content}


OUTLINE_PROMPT = """Create a blog post outline.

TITLE: {title}
BRIEF: {brief}

Write 4 to 6 sections in logical reading order. For each section give a
heading, a one-sentence summary of what it covers, and a target length.

Respond with JSON:
{{"sections": [{{"index": 1, "title": "heading", "summary": "summary", "length": "300 words"}}]}}"""

SECTIONS_PROMPT = """Write the body of a blog post titled "{title}" following this outline.

{outline}

Rules:
- One HTML fragment per section, in the same order
- Start each section with an <h2> holding its heading
- Use <p>, <ul>, <ol>, <strong>; no <html>, <head> or <body> tags
- No markdown

Respond with JSON:
{{"sections": [{{"html": "<h2>...</h2><p>...</p>"}}]}}"""

TOPICS_PROMPT = """Suggest {limit} SEO-optimized blog post titles about: {topic}

Each title should target a concrete search intent. Add a one-sentence
description of what the post would cover.

Respond with JSON:
{{"topics": [{{"title": "title", "content": "description"}}]}}"""


def _require_list(data: Any, key: str) -> List[Dict[str, Any]]:
    items = data.get(key) if isinstance(data, dict) else None
    if not isinstance(items, list) or not items:
        raise ContentGenerationError(f"Model response has no '{key}' list")
    return items


class ContentGenerator:
    """Outline-then-sections blog post writer."""

    def __init__(self, client: Optional[OpenAIClient] = None):
        self.client = client or OpenAIClient()

    async def generate_outline(self, title: str, brief: str) -> List[OutlineSection]:
        data = await self.client.complete_json(
            [{"role": "user", "content": OUTLINE_PROMPT.format(title=title, brief=brief or title)}],
            temperature=0.4,
        )
        sections = [
            OutlineSection(
                index=int(item.get("index", i + 1)),
                title=str(item.get("title", "")).strip(),
                summary=str(item.get("summary", "")).strip(),
                length=str(item.get("length", "")),
            )
            for i, item in enumerate(_require_list(data, "sections"))
        ]
        sections.sort(key=lambda s: s.index)
        return sections

    async def generate_sections(self, title: str, outline: List[OutlineSection]) -> List[str]:
        outline_text = "\n".join(
            f"{s.index}. {s.title} - {s.summary} ({s.length})" for s in outline
        )
        data = await self.client.complete_json(
            [{"role": "user", "content": SECTIONS_PROMPT.format(title=title, outline=outline_text)}],
            temperature=0.7,
            max_tokens=6000,
        )
        html_parts = [str(item.get("html", "")).strip() for item in _require_list(data, "sections")]
        return [part for part in html_parts if part]

    async def generate(self, title: str, brief: str) -> str:
        """
        Produce the post body as HTML.

        Raises:
            ContentGenerationError: the model failed or returned unusable output
        """
        logger.info(f"Generating content for: {title}")
        try:
            outline = await self.generate_outline(title, brief)
            sections = await self.generate_sections(title, outline)
        except AIServiceError as e:
            raise ContentGenerationError(f"AI request failed: {e}") from e

        if not sections:
            raise ContentGenerationError("Model returned no section content")
        return "\n".join(sections)


class TopicGenerator:
    """SEO title suggestions for a subject."""

    def __init__(self, client: Optional[OpenAIClient] = None):
        self.client = client or OpenAIClient()

    async def generate_topics(self, topic: str, limit: int = 10) -> List[Topic]:
        logger.info(f"Generating {limit} topics for: {topic}")
        try:
            data = await self.client.complete_json(
                [{"role": "user", "content": TOPICS_PROMPT.format(topic=topic, limit=limit)}],
                temperature=0.8,
            )
        except AIServiceError as e:
            raise ContentGenerationError(f"AI request failed: {e}") from e

        topics = [
            Topic(title=str(item.get("title", "")).strip(), content=str(item.get("content", "")).strip())
            for item in _require_list(data, "topics")
            if str(item.get("title", "")).strip()
        ]
        return topics[:limit]
