from __future__ import annotations

import argparse
import asyncio
from typing import List, Sequence

from playwright.async_api import async_playwright

from exchange_rpa.caregivers.batch import process_batch
from exchange_rpa.caregivers.board import BoardApiError, BoardSettings, CaregiverRecord, MondayBoardClient, RecordSource
from exchange_rpa.caregivers.entry import EntrySettings, enter_caregiver
from exchange_rpa.caregivers.mapping import DEFAULT_FIELD_MAPPING
from exchange_rpa.config import ConfigError, config
from exchange_rpa.json_logger import JsonLogger, log_event, new_run_id
from exchange_rpa.session.auth import SessionAuthenticator
from exchange_rpa.session.browser import close_session, open_session
from exchange_rpa.session.mfa import build_code_source

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


async def _load_records(source: RecordSource, settings: BoardSettings, limit: int | None) -> List[CaregiverRecord]:
    records = await source.fetch_records(settings.status_column, settings.ready_value)
    if limit is not None and limit >= 0:
        records = records[:limit]
    return records


async def main(
    *,
    headless: bool = True,
    dry_run: bool = False,
    limit: int | None = None,
    slow_mo_ms: int = 0,
    run_id: str | None = None,
    logger: JsonLogger | None = None,
    source: RecordSource | None = None,
    board_settings: BoardSettings = BoardSettings(),
) -> int:
    """Enter every board record marked ready and return the process exit code."""

    resolved_run_id = run_id or new_run_id()
    logger = logger or JsonLogger(run_id=resolved_run_id)
    try:
        log_event(
            logger=logger,
            phase="orchestrator",
            message="Caregiver batch starting",
            headless=headless,
            dry_run=dry_run,
            limit=limit,
        )
        try:
            source = source or MondayBoardClient(config.monday_api_token, logger=logger, settings=board_settings)
            credentials = None if dry_run else config.require_credentials()
        except (BoardApiError, ConfigError) as exc:
            logger.error(phase="orchestrator", message="Invalid input; nothing was run", error=str(exc))
            return EXIT_INVALID

        records = await _load_records(source, board_settings, limit)
        if not records:
            log_event(logger=logger, phase="orchestrator", message="No records ready for entry")
            return EXIT_OK

        if dry_run:
            for record in records:
                log_event(
                    logger=logger,
                    phase="orchestrator",
                    message="Would enter caregiver",
                    record_id=record.record_id,
                    name=record.name,
                )
            return EXIT_OK

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
            entry_settings = EntrySettings(default_tenant_id=config.default_tenant_id)

            async def enter(record: CaregiverRecord):
                return await enter_caregiver(
                    session.page,
                    record,
                    DEFAULT_FIELD_MAPPING,
                    authenticator=authenticator,
                    logger=logger,
                    run_id=resolved_run_id,
                    settings=entry_settings,
                )

            try:
                summary = await process_batch(
                    records,
                    enter=enter,
                    source=source,
                    completed_status=board_settings.completed_value,
                    logger=logger,
                )
            finally:
                await close_session(session, logger=logger)

        for line in summary.summary_lines():
            print(line, flush=True)
        return EXIT_OK if not summary.failed else EXIT_FAILED
    except Exception as exc:
        logger.error(
            phase="orchestrator",
            message="EXECUTION FAILED",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return EXIT_FAILED
    finally:
        logger.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enter ready caregivers from the work board into the portal")
    parser.add_argument("--headful", action="store_true", help="Show the browser (allows manual MFA)")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="List ready records without entering them")
    parser.add_argument("--limit", type=int, default=None, help="Process at most N records")
    parser.add_argument("--slow-mo", dest="slow_mo", type=int, default=0, help="Slow down browser actions (ms)")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    return parser


async def _async_entrypoint(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return await main(
        headless=not args.headful,
        dry_run=args.dry_run,
        limit=args.limit,
        slow_mo_ms=args.slow_mo,
        run_id=args.run_id,
    )


def run(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_async_entrypoint(argv))


def cli() -> None:  # pragma: no cover
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    cli()
