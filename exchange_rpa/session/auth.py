"""Portal sign-in state machine with second-factor handling."""
from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from exchange_rpa.common import actions, delays
from exchange_rpa.config import Credentials
from exchange_rpa.json_logger import JsonLogger, log_event
from exchange_rpa.session.mfa import CodeSource
from exchange_rpa.session.selectors import ERROR_STATE_SELECTORS, LoginSelectors

HEADLESS_MFA_MESSAGE = "cannot complete MFA in headless mode without configured code retrieval"


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    CREDENTIALS_SUBMITTED = "credentials_submitted"
    MFA_CHALLENGE = "mfa_challenge"
    LANDED = "landed"
    FAILED = "failed"


class AuthenticationError(RuntimeError):
    """Raised when the portal session cannot be established."""


class HeadlessMfaError(AuthenticationError):
    """Raised when a second-factor challenge appears and nobody can answer it."""

    def __init__(self, message: str = HEADLESS_MFA_MESSAGE) -> None:
        super().__init__(message)


class ResumeGate(Protocol):
    async def wait(self, *, reason: str) -> None:
        ...


class EventResumeGate:
    """Resume gate released programmatically via :meth:`resume`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reasons: list[str] = []

    def resume(self) -> None:
        self._event.set()

    @property
    def waiting(self) -> bool:
        return bool(self.reasons) and not self._event.is_set()

    async def wait(self, *, reason: str) -> None:
        self.reasons.append(reason)
        await self._event.wait()


class ConsoleResumeGate:
    """Resume gate released by an operator pressing ENTER."""

    def __init__(self, *, logger: JsonLogger) -> None:
        self.logger = logger

    async def wait(self, *, reason: str) -> None:
        banner = "=" * 60
        log_event(logger=self.logger, phase="login", status="warn", message="Operator action required", reason=reason)
        print(banner, flush=True)
        print(f"MFA DETECTED - {reason}", flush=True)
        print("Complete the challenge in the browser window.", flush=True)
        print(banner, flush=True)
        await asyncio.to_thread(input, "Press ENTER once you reach the landing page... ")


@dataclass(frozen=True)
class AuthTimeouts:
    page_load_ms: int = 30_000
    landing_after_mfa_s: float = 60.0
    landing_without_mfa_s: float = 15.0
    poll_min_ms: int = 500
    poll_max_ms: int = 1_000


class SessionAuthenticator:
    def __init__(
        self,
        page: Any,
        credentials: Credentials,
        *,
        logger: JsonLogger,
        run_id: str,
        login_url: str,
        headless: bool = True,
        code_source: Optional[CodeSource] = None,
        resume_gate: Optional[ResumeGate] = None,
        mfa_recipient: str | None = None,
        selectors: LoginSelectors = LoginSelectors(),
        timeouts: AuthTimeouts = AuthTimeouts(),
    ) -> None:
        self.page = page
        self.credentials = credentials
        self.logger = logger
        self.run_id = run_id
        self.login_url = login_url
        self.headless = headless
        self.code_source = code_source
        self.resume_gate = resume_gate
        self.mfa_recipient = mfa_recipient or credentials.username
        self.selectors = selectors
        self.timeouts = timeouts
        self.state = AuthState.UNAUTHENTICATED
        self.challenge_started_at: datetime | None = None
        logger.register_secret(credentials.password)

    # ── Playwright helpers ───────────────────────────────────────────

    async def _page_error_text(self) -> str | None:
        for selector in ERROR_STATE_SELECTORS:
            if not await actions.is_visible(self.page, selector):
                continue
            try:
                text = await self.page.locator(selector).first.inner_text()
            except Exception:
                continue
            if text and text.strip():
                return text.strip()[:300]
        return None

    def _current_url(self) -> str:
        return self.page.url or ""

    async def _fail(self, context: str, message: str) -> bool:
        self.state = AuthState.FAILED
        self.logger.error(
            phase="login",
            message=message,
            url=self._current_url(),
            page_error=await self._page_error_text(),
        )
        await actions.capture_screenshot(self.page, self.run_id, context, logger=self.logger)
        return False

    # ── state machine ────────────────────────────────────────────────

    async def _submit_credentials(self) -> bool:
        if not await actions.safe_fill(self.page, self.selectors.username, self.credentials.username, logger=self.logger):
            log_event(logger=self.logger, phase="login", status="error", message="Username field could not be filled")
            return False
        await delays.human_delay()
        if not await actions.safe_fill(self.page, self.selectors.password, self.credentials.password, logger=self.logger):
            log_event(logger=self.logger, phase="login", status="error", message="Password field could not be filled")
            return False
        await delays.human_delay()
        # mailbox timestamps carry whole seconds only
        self.challenge_started_at = datetime.now(timezone.utc).replace(microsecond=0)
        if not await actions.safe_click(self.page, self.selectors.submit, logger=self.logger):
            log_event(logger=self.logger, phase="login", status="error", message="Login submit could not be clicked")
            return False
        self.state = AuthState.CREDENTIALS_SUBMITTED
        log_event(logger=self.logger, phase="login", message="Credentials submitted")
        return True

    async def _detect_mfa(self) -> bool:
        url = self._current_url()
        for fragment in self.selectors.mfa_url_fragments:
            if fragment in url:
                log_event(logger=self.logger, phase="login", message="MFA challenge detected", via="url", fragment=fragment)
                return True
        indicator = await actions.first_visible(self.page, self.selectors.mfa_indicators)
        if indicator:
            log_event(logger=self.logger, phase="login", message="MFA challenge detected", via="element", selector=indicator)
            return True
        return False

    async def _await_operator(self, reason: str) -> None:
        gate = self.resume_gate or ConsoleResumeGate(logger=self.logger)
        await gate.wait(reason=reason)
        log_event(logger=self.logger, phase="login", message="Operator resumed the run")

    async def _fill_code(self, code: str) -> str | None:
        for selector in self.selectors.mfa_code_inputs:
            locator = self.page.locator(selector).first
            try:
                if await locator.is_visible():
                    await locator.fill(code)
                    return selector
            except Exception:
                continue
        return None

    async def _resolve_mfa(self) -> bool:
        if self.code_source is None:
            if self.headless:
                raise HeadlessMfaError()
            await self._await_operator("complete the MFA challenge manually")
            return True

        since = self.challenge_started_at or datetime.now(timezone.utc).replace(microsecond=0)
        code = await self.code_source.retrieve_code(self.mfa_recipient, since)
        if not code:
            if self.headless:
                raise HeadlessMfaError("no verification code retrieved and headless mode cannot fall back to manual MFA")
            await self._await_operator("no verification code arrived; enter it manually")
            return True

        self.logger.register_secret(code)
        filled_with = await self._fill_code(code)
        if not filled_with:
            log_event(logger=self.logger, phase="login", status="warn", message="MFA code input not found")
            if self.headless:
                return False
            await self._await_operator("code input not found; enter the code manually")
            return True
        log_event(logger=self.logger, phase="login", message="MFA code entered", selector=filled_with)

        await delays.human_delay(500, 1000)
        submitted_with = await actions.click_first_visible(self.page, self.selectors.mfa_submit)
        if submitted_with:
            log_event(logger=self.logger, phase="login", message="MFA form submitted", selector=submitted_with)
        else:
            log_event(logger=self.logger, phase="login", status="warn", message="MFA submit control not found")
            if not self.headless:
                await self._await_operator("submit control not found; submit the code manually")
        return True

    async def _landing_reached(self) -> str | None:
        url = self._current_url()
        for fragment in self.selectors.landing_url_fragments:
            if fragment in url:
                return "url"
        lowered = url.lower()
        if url.startswith("http") and not any(marker in lowered for marker in self.selectors.auth_url_markers):
            if not await self._detect_logged_out():
                return "url_without_auth_markers"
        if await actions.first_visible(self.page, self.selectors.logged_in):
            return "element"
        return None

    async def _wait_for_landing(self, timeout_s: float) -> bool:
        loop = asyncio.get_event_loop()
        deadline = loop.time() + timeout_s
        max_polls = max(1, math.ceil(timeout_s * 1000 / max(1, self.timeouts.poll_min_ms)))
        for _ in range(max_polls):
            reason = await self._landing_reached()
            if reason:
                log_event(logger=self.logger, phase="login", message="Landing page detected", via=reason, url=self._current_url())
                return True
            if loop.time() >= deadline:
                break
            await delays.human_delay(self.timeouts.poll_min_ms, self.timeouts.poll_max_ms)
        return False

    async def _detect_logged_out(self) -> bool:
        lowered = self._current_url().lower()
        if any(fragment in lowered for fragment in self.selectors.logged_out_url_fragments):
            return True
        return await actions.is_visible(self.page, self.selectors.logged_out_elements)

    # ── public API ───────────────────────────────────────────────────

    async def login(self) -> bool:
        self.state = AuthState.UNAUTHENTICATED
        try:
            log_event(logger=self.logger, phase="login", message="Starting login", url=self.login_url)
            await self.page.goto(self.login_url, wait_until="domcontentloaded", timeout=self.timeouts.page_load_ms)
            await delays.wait_for_stable_ui(self.page)

            if not await self._submit_credentials():
                return await self._fail("login-credentials-failed", "Failed to enter credentials")

            await delays.human_delay(1000, 2000)
            await delays.wait_for_stable_ui(self.page)

            if await self._detect_mfa():
                self.state = AuthState.MFA_CHALLENGE
                if not await self._resolve_mfa():
                    return await self._fail("login-mfa-failed", "MFA challenge could not be completed")
                await delays.human_delay(500, 1000)
                if not await self._wait_for_landing(self.timeouts.landing_after_mfa_s):
                    return await self._fail("login-mfa-failed", "Landing page not detected after MFA")
            elif not await self._wait_for_landing(self.timeouts.landing_without_mfa_s):
                log_event(
                    logger=self.logger,
                    phase="login",
                    status="warn",
                    message="Landing page not clearly detected; relying on final check",
                    url=self._current_url(),
                )

            await delays.human_delay(300, 500)
            if await self._detect_logged_out():
                return await self._fail("login-final-check-failed", "Login failed; still on the sign-in page")
        except Exception as exc:
            self.state = AuthState.FAILED
            self.logger.error(phase="login", message="Login raised an error", error=str(exc), error_type=type(exc).__name__)
            await actions.capture_screenshot(self.page, self.run_id, "login-exception", logger=self.logger)
            raise

        self.state = AuthState.LANDED
        log_event(logger=self.logger, phase="login", message="Login successful", url=self._current_url())
        return True

    async def is_session_live(self) -> bool:
        live = not await self._detect_logged_out()
        self.logger.debug(phase="login", message="Session liveness checked", live=live, url=self._current_url())
        return live

    async def ensure_logged_in(self) -> bool:
        # a fresh page sits on about:blank and can never be live
        if self._current_url().startswith("http") and await self.is_session_live():
            if self.state is not AuthState.LANDED:
                self.state = AuthState.LANDED
                log_event(logger=self.logger, phase="login", message="Existing session is live; skipping login")
            return True
        log_event(logger=self.logger, phase="login", message="Session not live; logging in")
        return await self.login()
