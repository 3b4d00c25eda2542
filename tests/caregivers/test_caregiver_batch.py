import pytest

from exchange_rpa.caregivers.batch import BatchSummary, RecordOutcome, process_batch
from exchange_rpa.caregivers.board import CaregiverRecord
from exchange_rpa.caregivers.entry import EntryResult, EntryVerdict
from exchange_rpa.session.auth import AuthenticationError
from playwright_fakes import logged_events


class _Source:
    def __init__(self, fail_updates=()) -> None:
        self.updated = []
        self.fail_updates = set(fail_updates)

    async def fetch_records(self, filter_key, filter_value):
        return []

    async def update_status(self, record_id, new_status):
        if record_id in self.fail_updates:
            raise RuntimeError("board unavailable")
        self.updated.append((record_id, new_status))


def _records(count: int = 5):
    return [CaregiverRecord(record_id=str(index), name=f"Caregiver {index}") for index in range(1, count + 1)]


def _enter_with(failures=(), unconfirmed=()):
    async def _enter(record: CaregiverRecord) -> EntryResult:
        if record.record_id in failures:
            raise RuntimeError("form fill exploded")
        if record.record_id in unconfirmed:
            return EntryResult(record.record_id, record.name, False, EntryVerdict.UNCONFIRMED, "no indicator")
        return EntryResult(record.record_id, record.name, True, EntryVerdict.CONFIRMED)

    return _enter


@pytest.mark.asyncio
async def test_one_failing_record_does_not_abort_batch(logger) -> None:
    source = _Source()

    summary = await process_batch(
        _records(), enter=_enter_with(failures={"3"}), source=source, completed_status="Entered", logger=logger
    )

    assert len(summary.succeeded) == 4
    assert [outcome.record_id for outcome in summary.failed] == ["3"]
    assert source.updated == [("1", "Entered"), ("2", "Entered"), ("4", "Entered"), ("5", "Entered")]


@pytest.mark.asyncio
async def test_unconfirmed_entries_keep_their_board_status(logger) -> None:
    source = _Source()

    summary = await process_batch(
        _records(2), enter=_enter_with(unconfirmed={"2"}), source=source, completed_status="Entered", logger=logger
    )

    assert source.updated == [("1", "Entered")]
    assert summary.failed[0].detail == "no indicator"


@pytest.mark.asyncio
async def test_status_update_failure_is_only_a_warning(logger, log_stream) -> None:
    source = _Source(fail_updates={"1"})

    summary = await process_batch(
        _records(1), enter=_enter_with(), source=source, completed_status="Entered", logger=logger
    )

    (outcome,) = summary.outcomes
    assert outcome.success is True
    assert outcome.status_updated is False
    assert any(event["status"] == "warn" for event in logged_events(log_stream))


@pytest.mark.asyncio
async def test_authentication_error_stops_the_batch(logger) -> None:
    calls = []

    async def _enter(record):
        calls.append(record.record_id)
        raise AuthenticationError("session lost")

    with pytest.raises(AuthenticationError):
        await process_batch(_records(), enter=_enter, source=_Source(), completed_status="Entered", logger=logger)

    assert calls == ["1"]


def test_summary_lines_mark_each_record() -> None:
    summary = BatchSummary()
    summary.record(RecordOutcome("1", "Jane Doe", True))
    summary.record(RecordOutcome("2", "John Roe", False, detail="field email failed"))

    lines = summary.summary_lines()

    assert lines[0] == "Processed 2 record(s): 1 succeeded, 1 failed"
    assert lines[1] == "  ✓ Jane Doe [1]"
    assert lines[2] == "  ✗ John Roe [2] (field email failed)"
