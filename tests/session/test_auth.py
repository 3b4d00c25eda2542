import asyncio
from datetime import datetime

import pytest

from exchange_rpa.config import Credentials
from exchange_rpa.session.auth import (
    HEADLESS_MFA_MESSAGE,
    AuthState,
    AuthTimeouts,
    EventResumeGate,
    HeadlessMfaError,
    SessionAuthenticator,
)
from exchange_rpa.session.selectors import LOGIN_PASSWORD, LOGIN_SUBMIT, LOGIN_USERNAME
from playwright_fakes import FakePage, messages

LOGIN_URL = "https://portal.example.com/identity/account/login"
MFA_URL = "https://portal.example.com/identity/mfa/verify"
HOME_URL = "https://portal.example.com/ENT2507010000/Common/Home_ns.aspx"
PASSWORD = "pw-Secret-123"
FAST = AuthTimeouts(landing_after_mfa_s=1.0, landing_without_mfa_s=1.0)


class _FixedCodeSource:
    def __init__(self, code):
        self.code = code
        self.calls = []

    async def retrieve_code(self, recipient: str, since: datetime):
        self.calls.append((recipient, since))
        return self.code


def _land(page: FakePage) -> None:
    page.url = HOME_URL
    page.visible.clear()


def _challenge(page: FakePage) -> None:
    page.url = MFA_URL
    page.visible = {'input[name="Code"]', 'button[type="submit"]'}


def _login_page(after_submit=_land, **kwargs) -> FakePage:
    page = FakePage(visible={LOGIN_USERNAME, LOGIN_PASSWORD, LOGIN_SUBMIT}, **kwargs)
    if after_submit is not None:
        page.on_action[("click", LOGIN_SUBMIT)] = after_submit
    return page


def _authenticator(page: FakePage, logger, **kwargs) -> SessionAuthenticator:
    kwargs.setdefault("timeouts", FAST)
    return SessionAuthenticator(
        page,
        Credentials(username="ops@example.com", password=PASSWORD),
        logger=logger,
        run_id="run-1",
        login_url=LOGIN_URL,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_login_without_mfa_lands(logger, log_stream) -> None:
    page = _login_page()
    auth = _authenticator(page, logger)

    assert await auth.login() is True

    assert auth.state is AuthState.LANDED
    assert page.visited == [LOGIN_URL]
    assert page.values[LOGIN_USERNAME] == "ops@example.com"
    assert page.performed("click") == [LOGIN_SUBMIT]
    assert PASSWORD not in log_stream.getvalue()
    assert "Login successful" in messages(log_stream)


@pytest.mark.asyncio
async def test_username_failure_never_touches_password_or_submit(logger) -> None:
    page = _login_page()
    page.visible.discard(LOGIN_USERNAME)
    auth = _authenticator(page, logger)

    assert await auth.login() is False

    assert auth.state is AuthState.FAILED
    assert page.performed("fill") == []
    assert page.performed("click") == []
    assert any("login-credentials-failed" in path for path in page.screenshots)


@pytest.mark.asyncio
async def test_headless_mfa_without_code_source_fails_fast(logger, _no_sleep) -> None:
    page = _login_page(after_submit=_challenge)
    auth = _authenticator(page, logger, headless=True, timeouts=AuthTimeouts())

    with pytest.raises(HeadlessMfaError, match=HEADLESS_MFA_MESSAGE):
        await auth.login()

    assert auth.state is AuthState.FAILED
    assert any("login-exception" in path for path in page.screenshots)
    # no landing-page polling happened
    assert sum(_no_sleep) < 10


@pytest.mark.asyncio
async def test_mfa_code_is_entered_and_masked(logger, log_stream) -> None:
    page = _login_page(after_submit=_challenge)
    page.on_action[("click", 'button[type="submit"]')] = _land
    source = _FixedCodeSource("482913")
    auth = _authenticator(page, logger, code_source=source, mfa_recipient="mfa@example.com")

    assert await auth.login() is True

    assert page.values['input[name="Code"]'] == "482913"
    recipient, since = source.calls[0]
    assert recipient == "mfa@example.com"
    assert since == auth.challenge_started_at
    assert since.microsecond == 0
    assert "482913" not in log_stream.getvalue()


@pytest.mark.asyncio
async def test_headless_mfa_with_no_code_retrieved_fails(logger) -> None:
    page = _login_page(after_submit=_challenge)
    auth = _authenticator(page, logger, code_source=_FixedCodeSource(None))

    with pytest.raises(HeadlessMfaError):
        await auth.login()


@pytest.mark.asyncio
async def test_headful_mfa_waits_for_operator_resume(logger) -> None:
    page = _login_page(after_submit=_challenge)
    gate = EventResumeGate()
    auth = _authenticator(page, logger, headless=False, resume_gate=gate)

    task = asyncio.create_task(auth.login())
    for _ in range(50):
        if gate.waiting:
            break
        await asyncio.sleep(0)

    assert gate.waiting
    assert auth.state is AuthState.MFA_CHALLENGE
    _land(page)
    gate.resume()

    assert await task is True
    assert auth.state is AuthState.LANDED
    assert gate.reasons == ["complete the MFA challenge manually"]


@pytest.mark.asyncio
async def test_still_on_login_page_fails_final_check(logger) -> None:
    page = _login_page(after_submit=None)
    auth = _authenticator(page, logger)

    assert await auth.login() is False

    assert auth.state is AuthState.FAILED
    assert any("login-final-check-failed" in path for path in page.screenshots)


@pytest.mark.asyncio
async def test_ensure_logged_in_reuses_live_session(logger) -> None:
    page = FakePage(url=HOME_URL)
    auth = _authenticator(page, logger)

    assert await auth.ensure_logged_in() is True

    assert page.visited == []
    assert auth.state is AuthState.LANDED


@pytest.mark.asyncio
async def test_ensure_logged_in_logs_in_from_blank_page(logger) -> None:
    page = _login_page()
    auth = _authenticator(page, logger)

    assert await auth.ensure_logged_in() is True

    assert page.visited == [LOGIN_URL]
