from pathlib import Path

import pytest

from exchange_rpa.config import PROJECT_ROOT
from exchange_rpa.reports.catalog import (
    REQUIRED_FIELDS,
    ReportConfigError,
    get_report_definition,
    load_report_catalog,
    parse_report_catalog,
)


def _definition(**overrides):
    body = {
        "description": "Census",
        "start_url": "https://portal.example.com/Reports",
        "menu_steps": [
            {"type": "hover", "selector": "#reports", "description": "Reports menu"},
            {"selector": "#census"},
        ],
        "date_range_selectors": {"from": "#from", "to": "#to"},
        "download_trigger": {"trigger_selector": "#export", "trigger_type": "submit"},
        "expected_filename_regex": r"census.*\.csv$",
        "validation": {"required_columns": ["Patient"], "min_rows": 1},
    }
    body.update(overrides)
    return body


def _catalog(**overrides):
    return parse_report_catalog({"reports": {"weekly_census": _definition(**overrides)}})


def test_definition_is_parsed_with_aliases() -> None:
    definition = get_report_definition(_catalog(), "weekly_census")

    assert definition.name == "weekly_census"
    assert [step.type for step in definition.menu_steps] == ["hover", "click"]
    assert definition.menu_steps[0].label == "Reports menu"
    assert definition.menu_steps[1].label == "#census"
    assert definition.date_range_selectors.from_selector == "#from"
    assert definition.download_trigger.selector == "#export"
    assert definition.download_trigger.type == "submit"
    assert definition.filename_pattern.search("census_2024.csv")
    assert definition.min_bytes == 100
    assert definition.date_format == "%Y-%m-%d"


@pytest.mark.parametrize("missing", REQUIRED_FIELDS)
def test_missing_required_field_is_rejected(missing: str) -> None:
    body = _definition()
    body.pop(missing)
    catalog = parse_report_catalog({"reports": {"weekly_census": body}})

    with pytest.raises(ReportConfigError, match=missing):
        get_report_definition(catalog, "weekly_census")


def test_empty_menu_steps_are_rejected() -> None:
    with pytest.raises(ReportConfigError, match="menu_steps"):
        get_report_definition(_catalog(menu_steps=[]), "weekly_census")


def test_uncompilable_filename_regex_is_rejected() -> None:
    with pytest.raises(ReportConfigError, match="expected_filename_regex"):
        get_report_definition(_catalog(expected_filename_regex="census(["), "weekly_census")


def test_unknown_step_type_is_rejected() -> None:
    with pytest.raises(ReportConfigError, match="is invalid"):
        get_report_definition(_catalog(menu_steps=[{"type": "drag", "selector": "#x"}]), "weekly_census")


def test_unknown_report_is_rejected() -> None:
    with pytest.raises(ReportConfigError, match="not found"):
        get_report_definition(_catalog(), "monthly_billing")


def test_catalog_must_be_a_mapping() -> None:
    with pytest.raises(ReportConfigError):
        parse_report_catalog(["weekly_census"])


def test_load_report_catalog_reads_yaml(tmp_path: Path, logger) -> None:
    path = tmp_path / "reports.yaml"
    path.write_text(
        "reports:\n"
        "  weekly_census:\n"
        "    start_url: https://portal.example.com/Reports\n"
        "    menu_steps:\n"
        "      - selector: '#census'\n"
        "    date_range_selectors: {from: '#from', to: '#to'}\n"
        "    download_trigger: {trigger_selector: '#export'}\n"
        "    expected_filename_regex: 'census.*\\.csv$'\n",
        encoding="utf-8",
    )

    catalog = load_report_catalog(path, logger=logger)

    assert catalog.names() == ["weekly_census"]
    assert get_report_definition(catalog, "weekly_census").download_trigger.type == "click"


def test_load_report_catalog_reports_missing_and_invalid_files(tmp_path: Path) -> None:
    with pytest.raises(ReportConfigError, match="not found"):
        load_report_catalog(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("reports: [unclosed", encoding="utf-8")
    with pytest.raises(ReportConfigError, match="not valid YAML"):
        load_report_catalog(broken)


def test_bundled_catalog_definitions_are_valid() -> None:
    catalog = load_report_catalog(PROJECT_ROOT / "reports.yaml")

    assert "weekly_census" in catalog.names()
    for name in catalog.names():
        get_report_definition(catalog, name)
