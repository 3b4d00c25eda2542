"""Randomised waits that keep browser interactions paced like an operator."""
from __future__ import annotations

import asyncio
import random
from typing import Any, Tuple

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

# tests swap this out for a no-op
_sleep = asyncio.sleep


def jitter_seconds(min_ms: int, max_ms: int) -> float:
    low, high = sorted((max(0, min_ms), max(0, max_ms)))
    return random.uniform(low, high) / 1000


def backoff_window(attempt: int) -> Tuple[int, int]:
    attempt = max(1, attempt)
    return 1000 * attempt, 2000 * attempt


async def human_delay(min_ms: int = 150, max_ms: int = 600) -> float:
    seconds = jitter_seconds(min_ms, max_ms)
    await _sleep(seconds)
    return seconds


async def pause(seconds: float) -> None:
    await _sleep(max(0.0, seconds))


async def wait_for_stable_ui(page: Any, timeout_ms: int = 5_000) -> bool:
    """Wait for network idle, degrading to DOM-ready. Returns True when idle was reached."""
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except (PlaywrightTimeoutError, asyncio.TimeoutError):
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            pass
        await human_delay(500, 800)
        return False
    await human_delay(200, 400)
    return True
