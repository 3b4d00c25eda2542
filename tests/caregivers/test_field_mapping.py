from datetime import date

import pytest

from exchange_rpa.caregivers.board import CaregiverRecord
from exchange_rpa.caregivers.mapping import (
    DEFAULT_FIELD_MAPPING,
    CheckboxField,
    DateField,
    DropdownField,
    MappingConfigError,
    MissingFieldValueError,
    PhoneField,
    TextField,
    application_date,
    format_ssn,
    initials,
    last_name,
    resolve_all,
    second_language,
    split_phone,
    to_iso_date,
)
from playwright_fakes import FakePage


def _record(**fields: str) -> CaregiverRecord:
    fields.setdefault("applicantName", "Jane Q Doe")
    return CaregiverRecord(record_id="42", name=fields["applicantName"], fields=fields)


def test_rule_cannot_declare_source_and_fixed_value() -> None:
    with pytest.raises(MappingConfigError):
        TextField(target="x", selector="#x", source="email", fixed_value="y")


def test_resolution_order_is_fixed_then_source_then_default() -> None:
    fixed = TextField(target="state", selector="#s", fixed_value="NY")
    sourced = TextField(target="city", selector="#c", source="city", default_value="New York")
    computed = TextField(target="stamp", selector="#d", fixed_value=lambda record: f"id-{record.record_id}")

    assert fixed.resolve(_record(city="Albany")) == "NY"
    assert sourced.resolve(_record(city="Albany")) == "Albany"
    assert sourced.resolve(_record(city="  ")) == "New York"
    assert computed.resolve(_record()) == "id-42"


def test_transform_applies_only_to_sourced_values() -> None:
    rule = TextField(target="ssn", selector="#ssn", source="ssn", transform=format_ssn, default_value="777-88-9999")

    assert rule.resolve(_record(ssn="123456789")) == "123-45-6789"
    assert rule.resolve(_record()) == "777-88-9999"


def test_resolve_all_reports_every_missing_required_field() -> None:
    mapping = (
        TextField(target="email", selector="#e", source="email", required=True),
        TextField(target="phone", selector="#p", source="phone", required=True),
        TextField(target="notes", selector="#n", source="notes"),
    )

    with pytest.raises(MissingFieldValueError) as excinfo:
        resolve_all(mapping, _record())

    assert excinfo.value.targets == ["email", "phone"]


def test_default_mapping_resolves_a_typical_record() -> None:
    record = _record(email="jane@example.com", phone="(516) 555-0134", languages="Haitian Creole, French")

    values = {rule.target: value for rule, value in resolve_all(DEFAULT_FIELD_MAPPING, record)}

    assert values["firstName"] == "Jane"
    assert values["lastName"] == "Q Doe"
    assert values["initials"] == "JQD"
    assert values["state"] == "NY"
    assert values["homePhone"] == ("516", "555", "0134")
    assert values["language1"] == "Haitian Creole"
    assert values["language2"] == "French"
    assert values["dateOfBirth"] == "1990-01-01"
    assert values["applicationDate"] == date.today().isoformat()
    assert values["employmentTypeHHA"] is None


def test_transforms() -> None:
    assert split_phone("+1 516-555-0134") == ("516", "555", "0134")
    assert to_iso_date("4/2/1988") == "1988-04-02"
    assert to_iso_date("1988-04-02") == "1988-04-02"
    assert initials("mary ann lee smith") == "MAL"
    assert last_name("Cher") == "Cher"
    assert second_language("English") == "Spanish"
    assert application_date(_record(applicationDate="01/05/2024")) == "2024-01-05"


@pytest.mark.asyncio
async def test_dropdown_falls_back_to_typing(logger) -> None:
    page = FakePage(visible={"#team"})
    page.unselectable.add("#team")
    rule = DropdownField(target="team", selector="#team", fixed_value="Nassau")

    outcome = await rule.apply(page, "Nassau", logger=logger)

    assert outcome.applied is True
    assert outcome.detail == "filled as text"
    assert page.values["#team"] == "Nassau"


@pytest.mark.asyncio
async def test_checkbox_only_clicks_when_state_differs(logger) -> None:
    page = FakePage(visible={"#pca"})
    rule = CheckboxField(target="pca", selector="#pca", fixed_value=True)

    await rule.apply(page, True, logger=logger)
    page.checked["#pca"] = True
    await rule.apply(page, True, logger=logger)

    assert page.performed("click") == ["#pca"]


@pytest.mark.asyncio
async def test_missing_checkbox_is_reported(logger) -> None:
    outcome = await CheckboxField(target="hha", selector="#hha").apply(FakePage(), True, logger=logger)

    assert outcome.applied is False
    assert outcome.detail == "checkbox not found"


@pytest.mark.asyncio
async def test_phone_parts_fill_three_inputs(logger) -> None:
    parts = ("#p1", "#p2", "#p3")
    page = FakePage(visible=set(parts))
    rule = PhoneField(target="homePhone", part_selectors=parts, source="phone")

    outcome = await rule.apply(page, ("516", "555", "0134"), logger=logger)

    assert outcome.applied is True
    assert [page.values[selector] for selector in parts] == ["516", "555", "0134"]


@pytest.mark.asyncio
async def test_date_field_retypes_when_fill_does_not_stick(logger) -> None:
    page = FakePage(visible={"#dob"})
    page.dropped_fills.add("#dob")
    rule = DateField(target="dateOfBirth", selector="#dob", source="dateOfBirth")

    outcome = await rule.apply(page, "1988-04-02", logger=logger)

    assert outcome.applied is True
    assert outcome.detail == "typed"
    assert ("press", "Control+A", None) in page.actions
    assert page.values["#dob"] == "1988-04-02"


def test_incomplete_slash_date_is_reported_as_missing() -> None:
    assert to_iso_date("12/31") == ""
    assert to_iso_date("12//1990") == ""

    dob = DateField(target="dateOfBirth", selector="#dob", source="dateOfBirth", required=True)
    with pytest.raises(MissingFieldValueError) as excinfo:
        resolve_all((dob,), _record(dateOfBirth="12/31"))

    assert excinfo.value.targets == ["dateOfBirth"]
