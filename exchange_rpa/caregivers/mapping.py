"""Declarative mapping from board records to staff-form fields.

Every rule resolves its value from exactly one place: a fixed value, a record
field (optionally transformed) with an optional default, or a default alone.
Fixed values and defaults may be callables of the record for computed values
such as "today". Each rule type knows how to apply its value to the page.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional, Sequence, Tuple

from exchange_rpa.caregivers.board import CaregiverRecord
from exchange_rpa.common import actions, delays
from exchange_rpa.json_logger import JsonLogger, log_event

Transform = Callable[[str], Any]


class MappingConfigError(ValueError):
    """Raised when a field rule is declared inconsistently."""


class MissingFieldValueError(ValueError):
    """Raised when required fields have no value for a record."""

    def __init__(self, targets: Sequence[str]) -> None:
        self.targets = list(targets)
        super().__init__(f"Required field(s) missing a value: {', '.join(self.targets)}")


@dataclass(frozen=True)
class FillOutcome:
    target: str
    applied: bool
    detail: Optional[str] = None


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, tuple):
        return all(is_blank(part) for part in value)
    return False


@dataclass(frozen=True, kw_only=True)
class FieldRule:
    target: str
    required: bool = False
    source: Optional[str] = None
    fixed_value: Any = None
    default_value: Any = None
    transform: Optional[Transform] = None

    def __post_init__(self) -> None:
        if self.source and self.fixed_value is not None:
            raise MappingConfigError(f"Field {self.target!r} declares both a source and a fixed value")

    def resolve(self, record: CaregiverRecord) -> Any:
        if self.fixed_value is not None:
            return self.fixed_value(record) if callable(self.fixed_value) else self.fixed_value
        if self.source:
            raw = record.get(self.source)
            if not is_blank(raw):
                return self.transform(raw) if self.transform else raw
        if callable(self.default_value):
            return self.default_value(record)
        return self.default_value

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class TextField(FieldRule):
    selector: str

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        ok = await actions.safe_fill(page, self.selector, str(value), logger=logger)
        return FillOutcome(self.target, ok, None if ok else "fill failed")


@dataclass(frozen=True, kw_only=True)
class DropdownField(FieldRule):
    selector: str

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        if await actions.attempt_interaction(page, self.selector, "select", str(value), logger=logger):
            return FillOutcome(self.target, True)
        log_event(
            logger=logger,
            phase="form",
            status="warn",
            message="Option select failed; typing the value instead",
            target=self.target,
        )
        ok = await actions.safe_fill(page, self.selector, str(value), logger=logger)
        return FillOutcome(self.target, ok, "filled as text" if ok else "select and fill failed")


@dataclass(frozen=True, kw_only=True)
class CheckboxField(FieldRule):
    selector: str

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        wanted = bool(value)
        locator = page.locator(self.selector).first
        try:
            if not await locator.count():
                return FillOutcome(self.target, False, "checkbox not found")
            if bool(await locator.is_checked()) != wanted:
                await delays.human_delay()
                await locator.click()
        except Exception as exc:
            return FillOutcome(self.target, False, f"checkbox error: {exc}")
        return FillOutcome(self.target, True, "checked" if wanted else "unchecked")


def split_phone(raw: str) -> Tuple[str, str, str]:
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits[0:3], digits[3:6], digits[6:10]


@dataclass(frozen=True, kw_only=True)
class PhoneField(FieldRule):
    """Area code, exchange and line number spread over three inputs."""

    part_selectors: Tuple[str, str, str]
    transform: Optional[Transform] = split_phone

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        parts = value if isinstance(value, tuple) else split_phone(str(value))
        for selector, part in zip(self.part_selectors, parts):
            if not await actions.safe_fill(page, selector, part, logger=logger):
                return FillOutcome(self.target, False, f"fill failed for {selector}")
        return FillOutcome(self.target, True)


def to_iso_date(raw: str) -> str:
    """Convert ``M/D/YYYY`` to ISO; an incomplete slash date resolves to an empty value."""
    value = (raw or "").strip()
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        return value
    if "/" in value:
        parts = [part.strip() for part in value.split("/")]
        if len(parts) != 3 or not all(part.isdigit() for part in parts):
            return ""
        month, day, year = parts
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return value


@dataclass(frozen=True, kw_only=True)
class DateField(FieldRule):
    """Date input that silently drops filled values on some pages; retried by typing."""

    selector: str
    transform: Optional[Transform] = to_iso_date

    async def _current_value(self, page: Any) -> Optional[str]:
        try:
            return await page.locator(self.selector).first.input_value()
        except Exception:
            return None

    async def apply(self, page: Any, value: Any, *, logger: JsonLogger) -> FillOutcome:
        text = str(value)
        await actions.safe_fill(page, self.selector, text, logger=logger)
        await delays.human_delay(200, 300)
        if await self._current_value(page) == text:
            return FillOutcome(self.target, True)

        log_event(logger=logger, phase="form", status="warn", message="Date value did not stick; retyping", target=self.target)
        try:
            await page.locator(self.selector).first.click()
            await page.keyboard.press("Control+A")
            await page.keyboard.type(text)
        except Exception as exc:
            return FillOutcome(self.target, False, f"keyboard entry failed: {exc}")
        await delays.human_delay(200, 300)
        ok = await self._current_value(page) == text
        return FillOutcome(self.target, ok, "typed" if ok else "date value not accepted")


# ── transforms ───────────────────────────────────────────────────────


def first_name(name: str) -> str:
    return name.strip().split()[0]


def last_name(name: str) -> str:
    parts = name.strip().split()
    return " ".join(parts[1:]) or parts[0]


def initials(name: str) -> str:
    return "".join(part[0] for part in name.strip().split()).upper()[:3]


def format_ssn(raw: str) -> str:
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 9:
        return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"
    return raw


def zip5(raw: str) -> str:
    return re.sub(r"\D", "", raw)[:5]


def first_language(raw: str) -> str:
    return raw.split(",")[0].strip() or "English"


def second_language(raw: str) -> str:
    parts = [part.strip() for part in raw.split(",")]
    return parts[1] if len(parts) > 1 and parts[1] else "Spanish"


def declares_hha(raw: str) -> bool:
    return "hha" in raw.lower()


def application_date(record: CaregiverRecord) -> str:
    raw = record.get("applicationDate")
    if raw.strip():
        return to_iso_date(raw)
    return date.today().isoformat()


def resolve_all(mapping: Sequence[FieldRule], record: CaregiverRecord) -> list[tuple[FieldRule, Any]]:
    """Resolve every rule; raises :class:`MissingFieldValueError` when required values are absent."""
    resolved = [(rule, rule.resolve(record)) for rule in mapping]
    missing = [rule.target for rule, value in resolved if rule.required and is_blank(value)]
    if missing:
        raise MissingFieldValueError(missing)
    return resolved


HOME_PHONE_PREFIX = "ctl00_ContentPlaceHolder1_uxTxtHomePhone_uxtxtPhone"
MOBILE_PHONE_PREFIX = "ctl00_ContentPlaceHolder1_uxtxtNotificationTextNumber_uxtxtPhone"


def _phone_inputs(prefix: str) -> Tuple[str, str, str]:
    return (f'input[id="{prefix}1"]', f'input[id="{prefix}2"]', f'input[id="{prefix}3"]')


DEFAULT_FIELD_MAPPING: Tuple[FieldRule, ...] = (
    DropdownField(
        target="caregiverType",
        selector='select[id*="HiringStatus" i], select[name*="HiringStatus" i]',
        required=True,
        fixed_value="Employee",
    ),
    TextField(
        target="firstName",
        selector='input[name*="FirstName" i], input[id*="FirstName" i]',
        required=True,
        source="applicantName",
        transform=first_name,
    ),
    TextField(
        target="lastName",
        selector='input[name*="LastName" i], input[id*="LastName" i]',
        required=True,
        source="applicantName",
        transform=last_name,
    ),
    DropdownField(
        target="gender",
        selector='select[name*="Gender" i], select[id*="Gender" i]',
        required=True,
        fixed_value="Female",
    ),
    TextField(
        target="initials",
        selector='input[name*="Initials" i], input[id*="Initials" i]',
        required=True,
        source="applicantName",
        transform=initials,
    ),
    DateField(
        target="dateOfBirth",
        selector='input[name*="Birth" i], input[id*="Birth" i], input[type="date"]',
        required=True,
        source="dateOfBirth",
        default_value="1990-01-01",
    ),
    TextField(
        target="ssn",
        selector=(
            'input[name*="SSN" i]:not([type="hidden"]), input[id*="SSN" i]:not([type="hidden"]), '
            'input[name*="Social" i]:not([type="hidden"])'
        ),
        required=True,
        source="ssn",
        transform=format_ssn,
        default_value="777-88-9999",
    ),
    DropdownField(
        target="status",
        selector=(
            'select[name*="Status" i]:not([name*="Marital" i]):not([name*="Hiring" i]), '
            'select[id*="Status" i]:not([id*="Marital" i]):not([id*="Hiring" i])'
        ),
        required=True,
        fixed_value="Active",
    ),
    CheckboxField(
        target="employmentTypePCA",
        selector='input[id="ctl00_ContentPlaceHolder1_uxChkEmploymentType_0"]',
        fixed_value=True,
    ),
    CheckboxField(
        target="employmentTypeHHA",
        selector='input[type="checkbox"][value="HHA"], input[type="checkbox"][id*="HHA" i]',
        source="certificationType",
        transform=declares_hha,
    ),
    DropdownField(target="team", selector='select[name*="Team" i], select[id*="Team" i]', fixed_value="Nassau"),
    DropdownField(
        target="location",
        selector='select[name*="Location" i], select[id*="Location" i]',
        source="preferredLocations",
        default_value="Suffolk",
    ),
    DropdownField(target="branch", selector='select[name*="Branch" i], select[id*="Branch" i]', fixed_value="Main Office"),
    TextField(
        target="addressLine1",
        selector='input[id="ctl00_ContentPlaceHolder1_uxTxtStreet1"]',
        required=True,
        source="address1",
        default_value="123 Main Street",
    ),
    TextField(
        target="addressLine2",
        selector='input[name*="Address" i][name*="2" i], input[id*="AddressLine2" i], input[id*="Address2" i]',
        source="address2",
    ),
    TextField(
        target="zip",
        selector='input[name*="Zip" i]:not([name*="Zip4" i]), input[id*="Zip" i]:not([id*="Zip4" i])',
        required=True,
        source="zipCode",
        transform=zip5,
        default_value="10001",
    ),
    TextField(
        target="city",
        selector='input[name*="City" i], input[id*="City" i]',
        required=True,
        source="city",
        default_value="New York",
    ),
    TextField(
        target="state",
        selector=(
            'input[type="text"][name*="State" i]:not([type="hidden"]), '
            'input[type="text"][id*="State" i]:not([type="hidden"]):not([id*="__VIEW" i])'
        ),
        required=True,
        fixed_value="NY",
    ),
    PhoneField(target="homePhone", part_selectors=_phone_inputs(HOME_PHONE_PREFIX), required=True, source="phone"),
    PhoneField(target="mobilePhone", part_selectors=_phone_inputs(MOBILE_PHONE_PREFIX), required=True, source="phone"),
    TextField(
        target="email",
        selector='input[type="email"], input[name*="Email" i], input[id*="Email" i]',
        required=True,
        source="email",
    ),
    DropdownField(
        target="language1",
        selector='select[name*="Language" i][name*="1" i], select[id*="Language1" i]',
        required=True,
        source="languages",
        transform=first_language,
        default_value="English",
    ),
    DropdownField(
        target="language2",
        selector='select[name*="Language" i][name*="2" i], select[id*="Language2" i]',
        required=True,
        source="languages",
        transform=second_language,
        default_value="Spanish",
    ),
    DateField(
        target="applicationDate",
        selector='input[id="ctl00_ContentPlaceHolder1_uxtxtApplicationDate"]',
        required=True,
        fixed_value=application_date,
    ),
)
