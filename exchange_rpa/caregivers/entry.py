"""Staff-entry form automation for one caregiver record.

The flow is linear: make sure the portal session is live, open the staff form
(direct tenant URL first, menu clicks second), unlock and choose the primary
office, fill every mapped field, submit, and read the page back to decide
whether the portal accepted the entry. An outcome that cannot be confirmed is
reported as a failure so the record stays eligible for the next run.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from exchange_rpa.caregivers.board import CaregiverRecord
from exchange_rpa.caregivers.mapping import FieldRule, FillOutcome, is_blank, resolve_all
from exchange_rpa.common import actions, delays
from exchange_rpa.config import DEFAULT_TENANT_ID
from exchange_rpa.json_logger import JsonLogger, log_event
from exchange_rpa.session.auth import AuthenticationError, SessionAuthenticator

TENANT_RE = re.compile(r"/(ENT\d+)/")
STAFF_FORM_PATH = "Aide/AideDetails_ns.aspx"

SUBMIT_SELECTOR = (
    'input[type="submit"][value*="Save" i], button:has-text("Save"), input[id*="Save" i], '
    'input[name*="Save" i], button[type="submit"], button:has-text("Submit"), button:has-text("Add Staff")'
)

SUCCESS_INDICATORS: Tuple[str, ...] = (
    "text=/successfully added/i",
    "text=/staff created/i",
    ".success-message",
    '[data-testid="success"]',
)

ERROR_INDICATORS: Tuple[str, ...] = (
    ".error",
    ".alert-danger",
    '[role="alert"]',
    "text=/error/i",
    "text=/invalid/i",
    ".validation-summary-errors",
    'span[style*="color:Red"]',
    'span[style*="color: Red"]',
    "span.field-validation-error",
)

OFFICE_TRIGGERS: Tuple[str, ...] = ("div.ms-choice", "button.ms-choice", "div.ms-parent")

_ENABLE_OFFICE_JS = """
() => {
  document.querySelectorAll('div.ms-choice').forEach((el) => {
    el.setAttribute('aria-disabled', 'false');
    el.classList.remove('disabled');
  });
  document.querySelectorAll('select[name*="Office" i], select[id*="Office" i]').forEach((el) => {
    el.disabled = false;
    el.removeAttribute('disabled');
  });
  return true;
}
"""

_CLICK_OFFICE_LABEL_JS = """
(term) => {
  const wanted = term.toLowerCase();
  const labels = document.querySelectorAll('label.hhax-input, span.text-wrap-div, .ms-drop label');
  for (const label of labels) {
    if ((label.textContent || '').toLowerCase().includes(wanted)) {
      label.click();
      return true;
    }
  }
  return false;
}
"""

_OFFICE_CHECKBOX_JS = """
(term) => {
  const wanted = term.toLowerCase();
  for (const box of document.querySelectorAll('.ms-drop input[type="checkbox"]')) {
    const label = box.id ? document.querySelector(`label[for="${box.id}"]`) : box.closest('label');
    if (label && (label.textContent || '').toLowerCase().includes(wanted)) {
      return box.id || null;
    }
  }
  return null;
}
"""

_ENABLE_FIELDS_JS = """
() => {
  let count = 0;
  document.querySelectorAll('input[disabled], select[disabled], textarea[disabled]').forEach((el) => {
    if (el.type === 'hidden') { return; }
    el.disabled = false;
    el.removeAttribute('disabled');
    count += 1;
  });
  return count;
}
"""

# TODO: narrow this to the portal's confirmation banner once its markup is captured;
# unrelated page text containing "success" is treated as confirmation today.
_SUCCESS_TEXT_JS = """
() => {
  const text = (document.body && document.body.innerText || '').toLowerCase();
  return text.includes('successfully') || text.includes('success');
}
"""

_VALIDATION_TEXT_JS = """
() => {
  const found = [];
  document.querySelectorAll('span[style*="color:Red"], span[style*="color: Red"], .validation-summary-errors').forEach((el) => {
    const text = (el.textContent || '').trim();
    if (text && el.offsetParent !== null) { found.push(text); }
  });
  return found.slice(0, 5);
}
"""


@dataclass(frozen=True)
class EntrySettings:
    default_tenant_id: str = DEFAULT_TENANT_ID
    default_office: str = "AHS-Albany"
    menu_label: str = "Caregiver"
    submenu_label: str = "New Caregiver"
    submit_selector: str = SUBMIT_SELECTOR
    success_indicators: Tuple[str, ...] = SUCCESS_INDICATORS
    error_indicators: Tuple[str, ...] = ERROR_INDICATORS
    navigation_timeout_ms: int = 10_000


class EntryVerdict(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    UNCONFIRMED = "unconfirmed"


@dataclass
class EntryResult:
    record_id: str
    name: str
    success: bool
    verdict: Optional[EntryVerdict] = None
    detail: Optional[str] = None
    outcomes: List[FillOutcome] = field(default_factory=list)


def tenant_from_url(url: str) -> Optional[str]:
    match = TENANT_RE.search(url or "")
    return match.group(1) if match else None


def staff_form_url(current_url: str, default_tenant_id: str) -> Optional[str]:
    parts = urlsplit(current_url or "")
    if not parts.scheme.startswith("http") or not parts.netloc:
        return None
    tenant = tenant_from_url(current_url) or default_tenant_id
    return f"{parts.scheme}://{parts.netloc}/{tenant}/{STAFF_FORM_PATH}"


def office_search_terms(office: str) -> List[str]:
    """Full office name first, then its suffix and prefix around the dash."""
    terms = [office.strip()]
    if "-" in office:
        head, tail = office.split("-", 1)[0], office.rsplit("-", 1)[-1]
        terms.extend([tail.strip(), head.strip()])
    unique: List[str] = []
    for term in terms:
        if term and term not in unique:
            unique.append(term)
    return unique


# ── navigation ───────────────────────────────────────────────────────


async def _form_present(page: Any) -> bool:
    try:
        return bool(await page.locator("form").count())
    except Exception:
        return False


async def navigate_to_staff_form(page: Any, settings: EntrySettings, *, logger: JsonLogger, run_id: str) -> bool:
    target = staff_form_url(page.url, settings.default_tenant_id)
    if target:
        try:
            await page.goto(target, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
            await delays.wait_for_stable_ui(page)
            if await _form_present(page):
                log_event(logger=logger, phase="entry", message="Opened staff form", via="url", url=target)
                return True
        except Exception as exc:
            log_event(
                logger=logger,
                phase="entry",
                status="warn",
                message="Direct staff form URL failed; trying the menu",
                url=target,
                error=str(exc),
            )

    menu = (
        f'a:has-text("{settings.menu_label}")',
        f'span:has-text("{settings.menu_label}")',
        f'text="{settings.menu_label}"',
    )
    submenu = (
        f'a:has-text("{settings.submenu_label}")',
        f'span:has-text("{settings.submenu_label}")',
        f'text="{settings.submenu_label}"',
    )
    if await actions.click_first_visible(page, menu):
        await delays.human_delay(500, 1000)
        if await actions.click_first_visible(page, submenu):
            await delays.wait_for_stable_ui(page)
            if await _form_present(page):
                log_event(logger=logger, phase="entry", message="Opened staff form", via="menu")
                return True

    logger.error(phase="entry", message="Staff form could not be opened", url=page.url)
    await actions.capture_screenshot(page, run_id, "staff-form-navigation-failed", logger=logger)
    return False


# ── primary office ───────────────────────────────────────────────────


async def _office_selected(page: Any, term: str) -> bool:
    try:
        text = await page.locator("div.ms-choice").first.inner_text()
    except Exception:
        return False
    return term.lower() in (text or "").lower()


async def select_primary_office(page: Any, office: str, *, logger: JsonLogger) -> bool:
    """Choose ``office`` in the multi-select that ships disabled on the staff form."""
    try:
        await page.evaluate(_ENABLE_OFFICE_JS)
        await delays.human_delay(200, 400)
        opened = False
        for trigger in OFFICE_TRIGGERS:
            try:
                await page.locator(trigger).first.click(force=True, timeout=3_000)
            except Exception:
                continue
            opened = True
            break
        if not opened:
            log_event(logger=logger, phase="entry", status="warn", message="Primary office widget not found", office=office)
            return False
        await delays.human_delay(300, 600)

        for term in office_search_terms(office):
            if await page.evaluate(_CLICK_OFFICE_LABEL_JS, term):
                await delays.human_delay(200, 400)
                if await _office_selected(page, term):
                    log_event(logger=logger, phase="entry", message="Primary office selected", office=office, via="label")
                    return True
            box_id = await page.evaluate(_OFFICE_CHECKBOX_JS, term)
            if box_id and await actions.click_first_visible(page, (f'label[for="{box_id}"]', f'input[id="{box_id}"]')):
                log_event(logger=logger, phase="entry", message="Primary office selected", office=office, via="checkbox")
                return True

        if await actions.click_first_visible(page, (f"text={office}",)):
            log_event(logger=logger, phase="entry", message="Primary office selected", office=office, via="text")
            return True
    except Exception as exc:
        log_event(
            logger=logger,
            phase="entry",
            status="warn",
            message="Primary office selection raised",
            office=office,
            error=str(exc),
        )
        return False

    log_event(logger=logger, phase="entry", status="warn", message="Primary office not selected", office=office)
    return False


async def enable_disabled_fields(page: Any, *, logger: JsonLogger) -> int:
    try:
        count = int(await page.evaluate(_ENABLE_FIELDS_JS) or 0)
    except Exception as exc:
        log_event(logger=logger, phase="entry", status="warn", message="Could not enable form fields", error=str(exc))
        return 0
    logger.debug(phase="entry", message="Enabled disabled fields", count=count)
    return count


# ── fill / submit / verify ───────────────────────────────────────────


async def fill_form(
    page: Any,
    resolved: Sequence[Tuple[FieldRule, Any]],
    *,
    logger: JsonLogger,
    run_id: str,
) -> Tuple[bool, List[FillOutcome]]:
    outcomes: List[FillOutcome] = []
    for rule, value in resolved:
        if is_blank(value):
            outcomes.append(FillOutcome(rule.target, False, "skipped: no value"))
            continue
        outcome = await rule.apply(page, value, logger=logger)
        outcomes.append(outcome)
        if outcome.applied:
            logger.debug(phase="form", message="Field applied", target=rule.target, detail=outcome.detail)
            continue
        if rule.required:
            logger.error(phase="form", message="Required field could not be filled", target=rule.target, detail=outcome.detail)
            await actions.capture_screenshot(page, run_id, f"fill-{rule.target}-failed", logger=logger)
            return False, outcomes
        log_event(
            logger=logger,
            phase="form",
            status="warn",
            message="Optional field could not be filled",
            target=rule.target,
            detail=outcome.detail,
        )
    return True, outcomes


async def submit_form(page: Any, settings: EntrySettings, *, logger: JsonLogger, run_id: str) -> bool:
    if not await actions.safe_click(page, settings.submit_selector, logger=logger):
        logger.error(phase="entry", message="Submit control could not be clicked")
        await actions.capture_screenshot(page, run_id, "submit-failed", logger=logger)
        return False
    await delays.human_delay(2000, 3000)
    await delays.wait_for_stable_ui(page)
    return True


async def verify_submission(
    page: Any,
    settings: EntrySettings,
    *,
    logger: JsonLogger,
    run_id: str,
) -> Tuple[EntryVerdict, Optional[str]]:
    await actions.capture_screenshot(page, run_id, "after-submit", logger=logger)
    try:
        if await page.evaluate(_SUCCESS_TEXT_JS):
            return EntryVerdict.CONFIRMED, "success text on page"
    except Exception as exc:
        logger.debug(phase="entry", message="Success text scan failed", error=str(exc))

    indicator = await actions.first_visible(page, settings.success_indicators)
    if indicator:
        return EntryVerdict.CONFIRMED, f"success indicator {indicator}"

    for selector in settings.error_indicators:
        if not await actions.is_visible(page, selector):
            continue
        try:
            text = (await page.locator(selector).first.inner_text() or "").strip()
        except Exception:
            text = ""
        return EntryVerdict.REJECTED, text[:300] or f"error indicator {selector}"

    try:
        messages = await page.evaluate(_VALIDATION_TEXT_JS)
    except Exception:
        messages = None
    if messages:
        return EntryVerdict.REJECTED, "; ".join(str(message) for message in messages)[:300]

    return EntryVerdict.UNCONFIRMED, "no success or error indicator found"


# ── entry point ──────────────────────────────────────────────────────


async def enter_caregiver(
    page: Any,
    record: CaregiverRecord,
    mapping: Sequence[FieldRule],
    *,
    authenticator: SessionAuthenticator,
    logger: JsonLogger,
    run_id: str,
    settings: EntrySettings = EntrySettings(),
) -> EntryResult:
    """Create one staff profile from ``record``.

    Raises :class:`MissingFieldValueError` before touching the browser when a
    required field has no value, and :class:`AuthenticationError` when the
    session cannot be established. Other browser failures come back as an
    unsuccessful :class:`EntryResult`.
    """

    resolved = resolve_all(mapping, record)
    log = logger.bind(record_id=record.record_id)
    log_event(logger=log, phase="entry", message="Entering caregiver", name=record.name)

    try:
        if not await authenticator.ensure_logged_in():
            raise AuthenticationError("Portal session could not be established")

        if not await navigate_to_staff_form(page, settings, logger=log, run_id=run_id):
            return EntryResult(record.record_id, record.name, False, detail="staff form navigation failed")

        office = record.get("primaryOffice") or settings.default_office
        await select_primary_office(page, office, logger=log)
        await enable_disabled_fields(page, logger=log)

        filled, outcomes = await fill_form(page, resolved, logger=log, run_id=run_id)
        if not filled:
            failed = outcomes[-1].target
            return EntryResult(record.record_id, record.name, False, detail=f"field {failed} failed", outcomes=outcomes)

        if not await submit_form(page, settings, logger=log, run_id=run_id):
            return EntryResult(record.record_id, record.name, False, detail="submit failed", outcomes=outcomes)

        verdict, detail = await verify_submission(page, settings, logger=log, run_id=run_id)
    except AuthenticationError:
        raise
    except Exception as exc:
        log.error(phase="entry", message="Caregiver entry raised", error=str(exc), error_type=type(exc).__name__)
        await actions.capture_screenshot(page, run_id, "caregiver-entry-error", logger=log)
        raise

    success = verdict is EntryVerdict.CONFIRMED
    log_event(
        logger=log,
        phase="entry",
        status="ok" if success else "error",
        message="Caregiver entry confirmed" if success else "Caregiver entry not confirmed",
        verdict=verdict.value,
        detail=detail,
    )
    return EntryResult(record.record_id, record.name, success, verdict, detail, outcomes)
