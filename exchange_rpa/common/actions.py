"""Retry-wrapped page interactions and diagnostic screenshots."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from exchange_rpa.common import delays
from exchange_rpa.json_logger import JsonLogger, log_event

T = TypeVar("T")

INTERACTION_KINDS = {"click", "fill", "hover", "select", "check"}
DEFAULT_MAX_RETRIES = 2
DEFAULT_TIMEOUT_MS = 10_000


def _screenshots_dir() -> Path:
    from exchange_rpa.config import config

    return Path(config.screenshots_root)


def _slug(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "-", value).strip("-") or "screenshot"


async def capture_screenshot(
    page: Any,
    run_id: str,
    context: str,
    *,
    logger: JsonLogger,
    directory: Path | None = None,
) -> Optional[Path]:
    """Save a full-page screenshot; failures are logged and swallowed."""
    target_dir = directory or _screenshots_dir()
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    path = target_dir / f"{run_id}_{_slug(context)}_{timestamp}.png"
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path), full_page=True)
    except Exception as exc:
        log_event(
            logger=logger,
            phase="screenshot",
            status="warn",
            message="Unable to capture screenshot",
            context=context,
            error=str(exc),
        )
        return None
    log_event(logger=logger, phase="screenshot", message="Captured screenshot", context=context, path=str(path))
    return path


async def is_visible(page: Any, selector: str) -> bool:
    try:
        return bool(await page.locator(selector).first.is_visible())
    except Exception:
        return False


async def first_visible(page: Any, selectors: Iterable[str]) -> Optional[str]:
    """Return the first selector whose element is currently visible."""
    for selector in selectors:
        if await is_visible(page, selector):
            return selector
    return None


async def click_first_visible(page: Any, selectors: Iterable[str], *, timeout_ms: int = 5_000) -> Optional[str]:
    for selector in selectors:
        locator = page.locator(selector).first
        try:
            if not await locator.is_visible():
                continue
            await locator.click(timeout=timeout_ms)
        except Exception:
            continue
        return selector
    return None


async def _perform(locator: Any, kind: str, value: Any, timeout_ms: int) -> None:
    if kind == "click":
        await locator.click(timeout=timeout_ms)
    elif kind == "fill":
        await locator.fill("" if value is None else str(value), timeout=timeout_ms)
    elif kind == "hover":
        await locator.hover(timeout=timeout_ms)
    elif kind == "select":
        await locator.select_option(value, timeout=timeout_ms)
    elif kind == "check":
        await locator.check(timeout=timeout_ms)


async def attempt_interaction(
    page: Any,
    selector: str,
    kind: str,
    value: Any = None,
    *,
    logger: JsonLogger,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> bool:
    """Wait for ``selector`` to be visible and act on it.

    Each attempt waits up to ``timeout_ms`` for visibility, pauses briefly, then
    performs the interaction. Failed attempts back off with a growing jittered
    pause. Returns ``False`` once attempts are exhausted; never raises for
    element or timing failures.
    """

    if kind not in INTERACTION_KINDS:
        raise ValueError(f"Unsupported interaction kind: {kind!r}")

    attempts = max(0, max_retries) + 1
    last_error: str | None = None
    for attempt in range(1, attempts + 1):
        try:
            locator = page.locator(selector).first
            await locator.wait_for(state="visible", timeout=timeout_ms)
            await delays.human_delay()
            await _perform(locator, kind, value, timeout_ms)
        except Exception as exc:
            last_error = str(exc)
            logger.debug(
                phase="interaction",
                message="Interaction attempt failed",
                selector=selector,
                kind=kind,
                attempt=attempt,
                max_attempts=attempts,
                error=last_error,
            )
            if attempt < attempts:
                await delays.human_delay(*delays.backoff_window(attempt))
            continue
        logger.debug(phase="interaction", message="Interaction succeeded", selector=selector, kind=kind, attempt=attempt)
        return True

    log_event(
        logger=logger,
        phase="interaction",
        status="warn",
        message="Interaction failed after retries",
        selector=selector,
        kind=kind,
        attempts=attempts,
        error=last_error,
    )
    return False


async def safe_click(page: Any, selector: str, *, logger: JsonLogger, **kwargs: Any) -> bool:
    return await attempt_interaction(page, selector, "click", logger=logger, **kwargs)


async def safe_fill(page: Any, selector: str, value: str, *, logger: JsonLogger, **kwargs: Any) -> bool:
    return await attempt_interaction(page, selector, "fill", value, logger=logger, **kwargs)


async def attempt_operation(
    operation: Callable[[], Awaitable[T]],
    *,
    logger: JsonLogger,
    action_name: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    page: Any = None,
    run_id: str | None = None,
) -> T:
    """Run ``operation`` with retries, re-raising the last error once exhausted."""

    attempts = max(0, max_retries) + 1
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            log_event(
                logger=logger,
                phase="retry",
                status="warn",
                message=f"{action_name} failed",
                action=action_name,
                attempt=attempt,
                max_attempts=attempts,
                error=str(exc),
            )
            if page is not None and run_id:
                await capture_screenshot(page, run_id, f"{action_name}-attempt-{attempt}", logger=logger)
            if attempt >= attempts:
                logger.error(phase="retry", message=f"{action_name} exhausted retries", action=action_name, attempts=attempts)
                raise
            await delays.human_delay(*delays.backoff_window(attempt))
    raise RuntimeError("unreachable")  # pragma: no cover
