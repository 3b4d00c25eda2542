"""Report run orchestration: sign in, navigate, set the date range, download."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, List

from exchange_rpa.common import actions, delays
from exchange_rpa.json_logger import JsonLogger, log_event, timed_event
from exchange_rpa.reports.catalog import NavigationStep, ReportCatalog, ReportDefinition, ValidationRules, get_report_definition
from exchange_rpa.reports.downloads import (
    DownloadRecord,
    find_previous_download,
    find_recorded_download,
    record_download,
    setup_download_dir,
    trigger_and_await,
)
from exchange_rpa.session.auth import AuthenticationError, SessionAuthenticator

PAGE_LOAD_TIMEOUT_MS = 30_000
GENERATE_SETTLE_TIMEOUT_MS = 10_000


class ReportFlowError(RuntimeError):
    """Raised when a navigation step cannot be completed after retries."""


@dataclass(frozen=True)
class ReportRunParams:
    report_name: str
    from_date: date
    to_date: date
    force: bool = False

    def __post_init__(self) -> None:
        if self.from_date > self.to_date:
            raise ValueError("from date must be on or before to date")

    @property
    def from_iso(self) -> str:
        return self.from_date.isoformat()

    @property
    def to_iso(self) -> str:
        return self.to_date.isoformat()


def validate_report_content(path: Path, rules: ValidationRules, *, logger: JsonLogger) -> List[str]:
    """Soft checks on the downloaded file. Returns the warnings that were logged."""
    warnings: List[str] = []
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        warnings.append(f"Unable to read downloaded file: {exc}")
        log_event(logger=logger, phase="validation", status="warn", message=warnings[-1], path=str(path))
        return warnings

    lines = text.splitlines()
    header = lines[0] if lines else ""
    for column in rules.required_columns:
        if column not in header:
            warnings.append(f'Expected column "{column}" not found in header')
            log_event(logger=logger, phase="validation", status="warn", message=warnings[-1], column=column)

    if rules.min_rows is not None:
        row_count = max(0, len([line for line in lines if line.strip()]) - 1)
        if row_count < rules.min_rows:
            warnings.append(f"Expected at least {rules.min_rows} rows, found {row_count}")
            log_event(
                logger=logger,
                phase="validation",
                status="warn",
                message=warnings[-1],
                row_count=row_count,
                min_rows=rules.min_rows,
            )
        else:
            log_event(logger=logger, phase="validation", message="Row count validation passed", row_count=row_count)
    return warnings


async def _navigate_menu(page: Any, steps: List[NavigationStep], *, logger: JsonLogger, run_id: str) -> None:
    total = len(steps)
    for index, step in enumerate(steps, start=1):
        log_event(logger=logger, phase="navigation", message=f"Menu step {index}/{total}: {step.label}")

        async def _step(step: NavigationStep = step) -> None:
            if not await actions.attempt_interaction(page, step.selector, step.type, logger=logger):
                raise ReportFlowError(f"Menu element not actionable: {step.selector}")
            await delays.wait_for_stable_ui(page)

        try:
            await actions.attempt_operation(
                _step, logger=logger, action_name=f"menu-step-{index}", page=page, run_id=run_id
            )
        except Exception as exc:
            raise ReportFlowError(f"Failed to complete menu step {index} ({step.label}): {exc}") from exc


async def _fill_date_range(page: Any, definition: ReportDefinition, params: ReportRunParams, *, logger: JsonLogger) -> None:
    selectors = definition.date_range_selectors
    from_value = params.from_date.strftime(definition.date_format)
    to_value = params.to_date.strftime(definition.date_format)
    log_event(logger=logger, phase="navigation", message="Filling date range", from_date=from_value, to_date=to_value)
    if not await actions.safe_fill(page, selectors.from_selector, from_value, logger=logger):
        raise ReportFlowError(f"Could not fill from-date field: {selectors.from_selector}")
    await delays.human_delay()
    if not await actions.safe_fill(page, selectors.to_selector, to_value, logger=logger):
        raise ReportFlowError(f"Could not fill to-date field: {selectors.to_selector}")


async def execute_report_download(
    page: Any,
    definition: ReportDefinition,
    params: ReportRunParams,
    directory: Path,
    *,
    authenticator: SessionAuthenticator,
    logger: JsonLogger,
    run_id: str,
) -> DownloadRecord:
    log_event(
        logger=logger,
        phase="report",
        message="Starting report download",
        report=definition.name,
        from_date=params.from_iso,
        to_date=params.to_iso,
    )
    try:
        if not await authenticator.ensure_logged_in():
            raise AuthenticationError("Failed to establish login session")

        async def _open_start_page() -> None:
            await page.goto(definition.start_url, wait_until="domcontentloaded", timeout=PAGE_LOAD_TIMEOUT_MS)
            await delays.wait_for_stable_ui(page)

        await actions.attempt_operation(
            _open_start_page, logger=logger, action_name="navigate-to-report-page", page=page, run_id=run_id
        )

        await _navigate_menu(page, definition.menu_steps, logger=logger, run_id=run_id)

        try:
            await actions.attempt_operation(
                lambda: _fill_date_range(page, definition, params, logger=logger),
                logger=logger,
                action_name="fill-date-range",
                page=page,
                run_id=run_id,
            )
        except Exception as exc:
            raise ReportFlowError(f"Failed to fill date range: {exc}") from exc

        if definition.run_button_selector:
            run_selector = definition.run_button_selector

            async def _generate() -> None:
                if not await actions.safe_click(page, run_selector, logger=logger):
                    raise ReportFlowError(f"Generate control not actionable: {run_selector}")
                await delays.wait_for_stable_ui(page, GENERATE_SETTLE_TIMEOUT_MS)

            try:
                await actions.attempt_operation(
                    _generate, logger=logger, action_name="click-run-button", page=page, run_id=run_id
                )
            except Exception as exc:
                raise ReportFlowError(f"Failed to generate report: {exc}") from exc

        record = await trigger_and_await(
            page,
            definition.download_trigger.selector,
            definition.filename_pattern,
            directory,
            logger=logger,
            trigger_type=definition.download_trigger.type,
            min_bytes=definition.min_bytes,
        )

        if definition.validation is not None:
            validate_report_content(record.path, definition.validation, logger=logger)
    except Exception as exc:
        logger.error(
            phase="report",
            message="Report download failed",
            report=definition.name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await actions.capture_screenshot(page, run_id, f"report-{definition.name}-failed", logger=logger)
        raise

    record_download(directory, record, report=definition.name, from_date=params.from_iso, to_date=params.to_iso)
    log_event(
        logger=logger,
        phase="report",
        message="Report download completed",
        report=definition.name,
        path=str(record.path),
        size_bytes=record.size_bytes,
    )
    return record


async def run_report(
    session: Any,
    authenticator: SessionAuthenticator,
    catalog: ReportCatalog,
    params: ReportRunParams,
    *,
    logger: JsonLogger,
    downloads_root: Path | None = None,
) -> Path:
    """Download one report for a date range, reusing an earlier download unless forced."""

    # invalid definitions fail here, before any browser interaction
    definition = get_report_definition(catalog, params.report_name)
    directory = setup_download_dir(session.run_id, downloads_root)
    pattern = definition.filename_pattern

    if params.force:
        log_event(logger=logger, phase="report", message="Force mode enabled; re-downloading", report=definition.name)
    else:
        existing = find_recorded_download(
            directory, report=definition.name, from_date=params.from_iso, to_date=params.to_iso, pattern=pattern
        ) or find_previous_download(
            directory.parent,
            report=definition.name,
            from_date=params.from_iso,
            to_date=params.to_iso,
            pattern=pattern,
            logger=logger,
        )
        if existing is not None:
            log_event(logger=logger, phase="report", message="Using existing download", path=str(existing))
            return existing

    with timed_event(logger=logger, phase="report", message="Report run", report=definition.name):
        record = await execute_report_download(
            session.page,
            definition,
            params,
            directory,
            authenticator=authenticator,
            logger=logger,
            run_id=session.run_id,
        )
    return record.path
