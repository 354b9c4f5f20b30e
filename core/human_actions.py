"""
Human-like input helpers for Playwright pages.
"""

import asyncio
import random

from playwright.async_api import Page

from api.config import config


async def human_like_delay(min_sec: float = None, max_sec: float = None):
    """Add human-like random delay."""
    low = config.MIN_HUMAN_DELAY if min_sec is None else min_sec
    high = config.MAX_HUMAN_DELAY if max_sec is None else max_sec
    await asyncio.sleep(random.uniform(low, high))


async def human_like_type(page: Page, selector: str, text: str, clear: bool = True):
    """Type text with variable delays, like a human."""
    element = page.locator(selector).first
    await element.click()
    if clear:
        await element.fill("")

    await human_like_delay(0.1, 0.3)

    for char in text:
        await element.type(char, delay=random.randint(config.MIN_TYPING_DELAY_MS, config.MAX_TYPING_DELAY_MS))
        if random.random() < 0.05:
            await asyncio.sleep(random.uniform(0.2, 0.5))


async def human_like_click(page: Page, selector: str):
    """Click with human-like mouse movement."""
    element = page.locator(selector).first
    box = await element.bounding_box()

    if box and box["width"] > 10 and box["height"] > 10:
        x = box["x"] + random.uniform(5, box["width"] - 5)
        y = box["y"] + random.uniform(5, box["height"] - 5)
        await page.mouse.move(x, y)
        await human_like_delay(0.1, 0.3)
        await page.mouse.click(x, y)
    else:
        await element.click()
