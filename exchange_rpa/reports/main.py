from __future__ import annotations

import argparse
import asyncio
from datetime import date
from pathlib import Path
from typing import Sequence

from playwright.async_api import async_playwright

from exchange_rpa.config import ConfigError, config
from exchange_rpa.json_logger import JsonLogger, log_event, new_run_id
from exchange_rpa.reports.catalog import ReportConfigError, get_report_definition, load_report_catalog
from exchange_rpa.reports.downloads import directory_stats
from exchange_rpa.reports.flow import ReportRunParams, run_report
from exchange_rpa.session.auth import SessionAuthenticator
from exchange_rpa.session.browser import close_session, open_session
from exchange_rpa.session.mfa import build_code_source

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


async def main(
    *,
    report_name: str,
    from_date: date,
    to_date: date,
    force: bool = False,
    headless: bool = True,
    config_path: str | None = None,
    slow_mo_ms: int = 0,
    run_id: str | None = None,
    logger: JsonLogger | None = None,
) -> int:
    """Run one report download and return the process exit code."""

    resolved_run_id = run_id or new_run_id()
    logger = logger or JsonLogger(run_id=resolved_run_id)
    try:
        log_event(
            logger=logger,
            phase="orchestrator",
            message="Report run starting",
            report=report_name,
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
            headless=headless,
            force=force,
        )
        try:
            params = ReportRunParams(report_name=report_name, from_date=from_date, to_date=to_date, force=force)
            catalog = load_report_catalog(config_path or config.reports_config, logger=logger)
            get_report_definition(catalog, report_name)
            credentials = config.require_credentials()
        except (ReportConfigError, ConfigError, ValueError) as exc:
            logger.error(phase="orchestrator", message="Invalid input; nothing was run", error=str(exc))
            return EXIT_INVALID

        logger.register_secret(credentials.password)
        async with async_playwright() as playwright:
            session = await open_session(
                playwright=playwright,
                logger=logger,
                run_id=resolved_run_id,
                headless=headless,
                slow_mo_ms=slow_mo_ms,
            )
            authenticator = SessionAuthenticator(
                session.page,
                credentials,
                logger=logger,
                run_id=resolved_run_id,
                login_url=config.login_url,
                headless=headless,
                code_source=build_code_source(config, logger=logger),
                mfa_recipient=config.hhae_email,
            )
            try:
                path = await run_report(session, authenticator, catalog, params, logger=logger)
            finally:
                await close_session(session, logger=logger)

        stats = directory_stats(Path(path).parent)
        log_event(logger=logger, phase="orchestrator", message="SUCCESS!", report=report_name)
        log_event(
            logger=logger,
            phase="orchestrator",
            message=f"Downloaded file: {path}",
            path=str(path),
            run_file_count=stats.count,
            run_total_bytes=stats.total_bytes,
        )
        return EXIT_OK
    except Exception as exc:
        logger.error(
            phase="orchestrator",
            message="EXECUTION FAILED",
            report=report_name,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return EXIT_FAILED
    finally:
        logger.close()


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}; expected YYYY-MM-DD") from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Download a portal report for a date range")
    parser.add_argument("--report", dest="report_name", required=True, help="Report name from the catalog")
    parser.add_argument("--from", dest="from_date", type=_parse_date, required=True, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_date", type=_parse_date, required=True, help="End date (YYYY-MM-DD)")
    parser.add_argument("--config", dest="config_path", default=None, help="Report catalog YAML path")
    parser.add_argument("--force", action="store_true", help="Re-download even if the file already exists")
    parser.add_argument("--headful", action="store_true", help="Show the browser (allows manual MFA)")
    parser.add_argument("--slow-mo", dest="slow_mo", type=int, default=0, help="Slow down browser actions (ms)")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    return parser


async def _async_entrypoint(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return await main(
        report_name=args.report_name,
        from_date=args.from_date,
        to_date=args.to_date,
        force=args.force,
        headless=not args.headful,
        config_path=args.config_path,
        slow_mo_ms=args.slow_mo,
        run_id=args.run_id,
    )


def run(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_async_entrypoint(argv))


def cli() -> None:  # pragma: no cover
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    cli()
