"""Sequential caregiver batch with per-record failure isolation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional

from exchange_rpa.caregivers.board import CaregiverRecord, RecordSource
from exchange_rpa.caregivers.entry import EntryResult
from exchange_rpa.json_logger import JsonLogger, log_event
from exchange_rpa.session.auth import AuthenticationError

EnterFn = Callable[[CaregiverRecord], Awaitable[EntryResult]]


@dataclass
class RecordOutcome:
    record_id: str
    name: str
    success: bool
    detail: Optional[str] = None
    status_updated: bool = False


@dataclass
class BatchSummary:
    outcomes: List[RecordOutcome] = field(default_factory=list)

    def record(self, outcome: RecordOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def succeeded(self) -> List[RecordOutcome]:
        return [outcome for outcome in self.outcomes if outcome.success]

    @property
    def failed(self) -> List[RecordOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    def summary_lines(self) -> List[str]:
        lines = [f"Processed {len(self.outcomes)} record(s): {len(self.succeeded)} succeeded, {len(self.failed)} failed"]
        for outcome in self.outcomes:
            mark = "✓" if outcome.success else "✗"
            suffix = f" ({outcome.detail})" if outcome.detail and not outcome.success else ""
            lines.append(f"  {mark} {outcome.name} [{outcome.record_id}]{suffix}")
        return lines


async def process_batch(
    records: Iterable[CaregiverRecord],
    *,
    enter: EnterFn,
    source: RecordSource,
    completed_status: str,
    logger: JsonLogger,
) -> BatchSummary:
    """Enter each record in turn; only successful records are marked completed upstream.

    A failing record is logged and the batch moves on. Authentication errors
    stop the batch since every later record would fail the same way.
    """

    summary = BatchSummary()
    for index, record in enumerate(records, start=1):
        log_event(logger=logger, phase="batch", message="Processing record", index=index, record_id=record.record_id, name=record.name)
        try:
            result = await enter(record)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.error(
                phase="batch",
                message="Record failed",
                record_id=record.record_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            summary.record(RecordOutcome(record.record_id, record.name, False, detail=str(exc)))
            continue

        outcome = RecordOutcome(record.record_id, record.name, result.success, detail=result.detail)
        if result.success:
            try:
                await source.update_status(record.record_id, completed_status)
                outcome.status_updated = True
            except Exception as exc:
                log_event(
                    logger=logger,
                    phase="batch",
                    status="warn",
                    message="Record entered but its board status was not updated",
                    record_id=record.record_id,
                    error=str(exc),
                )
        summary.record(outcome)

    log_event(
        logger=logger,
        phase="batch",
        message="Batch finished",
        total=len(summary.outcomes),
        succeeded=len(summary.succeeded),
        failed=len(summary.failed),
    )
    return summary
