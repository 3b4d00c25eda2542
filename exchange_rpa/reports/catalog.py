from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from exchange_rpa.json_logger import JsonLogger, log_event

REQUIRED_FIELDS = (
    "start_url",
    "menu_steps",
    "date_range_selectors",
    "download_trigger",
    "expected_filename_regex",
)


class ReportConfigError(ValueError):
    """Raised when a report definition is missing or malformed."""


class NavigationStep(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["click", "hover"] = "click"
    selector: str
    description: Optional[str] = None

    @property
    def label(self) -> str:
        return self.description or self.selector


class DateRangeSelectors(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_selector: str = Field(validation_alias=AliasChoices("from", "from_selector"))
    to_selector: str = Field(validation_alias=AliasChoices("to", "to_selector"))


class DownloadTrigger(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    selector: str = Field(validation_alias=AliasChoices("trigger_selector", "selector"))
    type: Literal["click", "submit"] = Field(default="click", validation_alias=AliasChoices("trigger_type", "type"))


class ValidationRules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    required_columns: List[str] = Field(default_factory=list)
    min_rows: Optional[int] = None


class ReportDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: Optional[str] = None
    start_url: str
    menu_steps: List[NavigationStep]
    date_range_selectors: DateRangeSelectors
    run_button_selector: Optional[str] = None
    download_trigger: DownloadTrigger
    expected_filename_regex: str
    validation: Optional[ValidationRules] = None
    date_format: str = "%Y-%m-%d"
    min_bytes: int = 100

    @field_validator("start_url")
    @classmethod
    def _start_url_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("start_url cannot be blank")
        return stripped

    @field_validator("menu_steps")
    @classmethod
    def _menu_steps_not_empty(cls, value: List[NavigationStep]) -> List[NavigationStep]:
        if not value:
            raise ValueError("menu_steps must contain at least one step")
        return value

    @field_validator("expected_filename_regex")
    @classmethod
    def _regex_compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"expected_filename_regex does not compile: {exc}") from exc
        return value

    @property
    def filename_pattern(self) -> re.Pattern[str]:
        return re.compile(self.expected_filename_regex)


@dataclass
class ReportCatalog:
    reports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    source: Optional[Path] = None

    def names(self) -> List[str]:
        return sorted(self.reports)


def parse_report_catalog(raw: Any, *, source: Path | None = None) -> ReportCatalog:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ReportConfigError("Report catalog must be a mapping with a 'reports' key")
    reports = raw.get("reports") or {}
    if not isinstance(reports, dict):
        raise ReportConfigError("'reports' must map report names to definitions")
    return ReportCatalog(reports={str(name): body for name, body in reports.items()}, source=source)


def load_report_catalog(path: str | Path, *, logger: JsonLogger | None = None) -> ReportCatalog:
    catalog_path = Path(path).expanduser()
    try:
        with catalog_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ReportConfigError(f"Report catalog not found: {catalog_path}") from exc
    except yaml.YAMLError as exc:
        raise ReportConfigError(f"Report catalog is not valid YAML: {exc}") from exc

    catalog = parse_report_catalog(raw, source=catalog_path)
    if logger is not None:
        log_event(
            logger=logger,
            phase="config",
            message="Loaded report catalog",
            path=str(catalog_path),
            report_count=len(catalog.reports),
        )
    return catalog


def get_report_definition(catalog: ReportCatalog, name: str) -> ReportDefinition:
    """Look up and validate ``name``; raises :class:`ReportConfigError` on any problem."""

    body = catalog.reports.get(name)
    if body is None:
        raise ReportConfigError(f'Report "{name}" not found in configuration')
    if not isinstance(body, dict):
        raise ReportConfigError(f'Report "{name}" must be a mapping')

    missing = [key for key in REQUIRED_FIELDS if not body.get(key)]
    if missing:
        raise ReportConfigError(f'Report "{name}" missing required field(s): {", ".join(missing)}')

    try:
        return ReportDefinition.model_validate({**body, "name": name})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ReportConfigError(f'Report "{name}" is invalid: {problems}') from exc
