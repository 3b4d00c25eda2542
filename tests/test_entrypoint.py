import pytest

import exchange_rpa.__main__ as entrypoint
from exchange_rpa.caregivers import main as caregivers_main
from exchange_rpa.reports import main as report_main


def test_report_command_forwards_remaining_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []
    monkeypatch.setattr(report_main, "run", lambda argv: seen.append(argv) or 0)

    assert entrypoint.main(["report", "--report", "weekly_census", "--from", "2024-01-01", "--to", "2024-01-07"]) == 0
    assert seen == [["--report", "weekly_census", "--from", "2024-01-01", "--to", "2024-01-07"]]


def test_caregivers_command_forwards_remaining_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = []
    monkeypatch.setattr(caregivers_main, "run", lambda argv: seen.append(argv) or 1)

    assert entrypoint.main(["caregivers", "--dry-run"]) == 1
    assert seen == [["--dry-run"]]


def test_unknown_command_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main(["publish"])

    assert excinfo.value.code == 2
