import io
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
PROJECT_PARENT = ROOT.parent

for path in (ROOT, TESTS_DIR, PROJECT_PARENT):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from exchange_rpa.common import actions, delays  # noqa: E402
from exchange_rpa.json_logger import JsonLogger  # noqa: E402
from exchange_rpa.reports import downloads  # noqa: E402


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    slept: list[float] = []

    async def _fake_sleep(seconds: float) -> None:
        slept.append(seconds)

    monkeypatch.setattr(delays, "_sleep", _fake_sleep)
    return slept


@pytest.fixture(autouse=True)
def _isolated_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(actions, "_screenshots_dir", lambda: tmp_path / "screenshots")
    monkeypatch.setattr(downloads, "_downloads_root", lambda: tmp_path / "downloads")


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    json_logger = JsonLogger(run_id="test-run", stream=log_stream, log_file_path=None, level="debug")
    yield json_logger
    json_logger.close()
