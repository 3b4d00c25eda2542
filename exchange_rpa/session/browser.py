from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from playwright.async_api import Browser, BrowserContext, Page

from exchange_rpa.config import config
from exchange_rpa.json_logger import JsonLogger, log_event

BROWSER_ARGS = ["--disable-blink-features=AutomationControlled", "--disable-dev-shm-usage"]
VIEWPORT = {"width": 1920, "height": 1080}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT_MS = 30_000


@dataclass
class Session:
    run_id: str
    headless: bool
    browser: Browser
    context: BrowserContext
    page: Page
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def launch_browser(*, playwright: Any, logger: JsonLogger, headless: bool, slow_mo_ms: int = 0) -> Browser:
    backend = (config.browser_backend or "").lower()
    chrome_exec = (config.chrome_executable or "").strip() or None
    launch_kwargs: Dict[str, Any] = {"headless": headless, "args": list(BROWSER_ARGS)}
    if slow_mo_ms:
        launch_kwargs["slow_mo"] = slow_mo_ms

    if backend == "local_chrome":
        if chrome_exec and Path(chrome_exec).is_file():
            launch_kwargs["executable_path"] = chrome_exec
            log_event(
                logger=logger,
                phase="init",
                message="Launching Playwright with local Chrome executable",
                backend=backend,
                executable_path=chrome_exec,
                headless=headless,
            )
        else:
            log_event(
                logger=logger,
                phase="init",
                status="warn",
                message="Configured local Chrome executable missing; falling back to bundled Chromium",
                backend=backend,
                executable_path=chrome_exec,
                headless=headless,
            )
    else:
        log_event(
            logger=logger,
            phase="init",
            message="Launching Playwright with bundled Chromium",
            backend=backend or "bundled_chromium",
            headless=headless,
        )

    try:
        return await playwright.chromium.launch(**launch_kwargs)
    except Exception as exc:
        if launch_kwargs.pop("executable_path", None) is not None:
            log_event(
                logger=logger,
                phase="init",
                status="warn",
                message="Local Chrome launch failed; retrying with bundled Chromium",
                backend=backend,
                executable_path=chrome_exec,
                headless=headless,
                error=str(exc),
            )
            return await playwright.chromium.launch(**launch_kwargs)
        raise


async def open_session(
    *,
    playwright: Any,
    logger: JsonLogger,
    run_id: str,
    headless: bool = True,
    slow_mo_ms: int = 0,
) -> Session:
    browser = await launch_browser(playwright=playwright, logger=logger, headless=headless, slow_mo_ms=slow_mo_ms)
    try:
        context = await browser.new_context(
            viewport=VIEWPORT,
            user_agent=USER_AGENT,
            accept_downloads=True,
        )
        context.set_default_timeout(DEFAULT_TIMEOUT_MS)
        page = await context.new_page()
    except Exception:
        with contextlib.suppress(Exception):
            await browser.close()
        raise
    log_event(logger=logger, phase="init", message="Browser session ready", headless=headless)
    return Session(run_id=run_id, headless=headless, browser=browser, context=context, page=page)


async def close_session(session: Session | None, *, logger: JsonLogger) -> None:
    if session is None:
        return
    with contextlib.suppress(Exception):
        await session.context.close()
    with contextlib.suppress(Exception):
        await session.browser.close()
    log_event(logger=logger, phase="teardown", message="Browser session closed")
