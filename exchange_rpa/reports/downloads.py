from __future__ import annotations

import contextlib
import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from exchange_rpa.json_logger import JsonLogger, log_event

PARTIAL_SUFFIXES = (".crdownload", ".tmp", ".part")
MANIFEST_NAME = "manifest.json"
DEFAULT_MIN_BYTES = 100
DEFAULT_DOWNLOAD_TIMEOUT_MS = 60_000


class DownloadError(RuntimeError):
    """Raised when a report download cannot be produced."""


class DownloadTimeoutError(DownloadError):
    """Raised when the portal never starts the download."""


class DownloadValidationError(DownloadError):
    """Raised when the saved file fails name or size checks."""


@dataclass(frozen=True)
class DownloadRecord:
    path: Path
    size_bytes: int
    created_at: datetime


@dataclass
class DownloadStats:
    count: int = 0
    total_bytes: int = 0
    files: List[Dict[str, Any]] = field(default_factory=list)


def _downloads_root() -> Path:
    from exchange_rpa.config import config

    return Path(config.downloads_root)


def is_partial(name: str) -> bool:
    return name.lower().endswith(PARTIAL_SUFFIXES)


def setup_download_dir(run_id: str, root: Path | None = None) -> Path:
    directory = (root or _downloads_root()) / run_id
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def locate_existing(directory: Path, pattern: re.Pattern[str], *, logger: JsonLogger) -> Optional[Path]:
    """Return a completed, non-empty file in ``directory`` whose name matches ``pattern``."""
    try:
        if not directory.is_dir():
            return None
        for candidate in sorted(directory.iterdir()):
            if not candidate.is_file() or candidate.name == MANIFEST_NAME:
                continue
            if is_partial(candidate.name) or not pattern.search(candidate.name):
                continue
            size = candidate.stat().st_size
            if size > 0:
                log_event(
                    logger=logger,
                    phase="download",
                    message="Existing download found",
                    path=str(candidate),
                    size_bytes=size,
                )
                return candidate
    except OSError as exc:
        log_event(
            logger=logger,
            phase="download",
            status="warn",
            message="Error checking for existing download",
            directory=str(directory),
            error=str(exc),
        )
    return None


def validate_download(
    path: Path,
    pattern: re.Pattern[str],
    min_bytes: int = DEFAULT_MIN_BYTES,
    *,
    logger: JsonLogger,
) -> bool:
    if is_partial(path.name):
        logger.error(phase="download", message="Downloaded file is still a partial artifact", filename=path.name)
        return False
    if not pattern.search(path.name):
        logger.error(
            phase="download",
            message="Filename does not match expected pattern",
            filename=path.name,
            pattern=pattern.pattern,
        )
        return False
    try:
        size = path.stat().st_size
    except OSError as exc:
        logger.error(phase="download", message="Download verification failed", filename=path.name, error=str(exc))
        return False
    if size < min_bytes:
        logger.error(
            phase="download",
            message="File size below minimum",
            filename=path.name,
            size_bytes=size,
            min_bytes=min_bytes,
        )
        return False
    log_event(logger=logger, phase="download", message="Download verified", filename=path.name, size_bytes=size)
    return True


async def trigger_and_await(
    page: Any,
    trigger_selector: str,
    pattern: re.Pattern[str],
    directory: Path,
    *,
    logger: JsonLogger,
    trigger_type: str = "click",
    timeout_ms: int = DEFAULT_DOWNLOAD_TIMEOUT_MS,
    min_bytes: int = DEFAULT_MIN_BYTES,
) -> DownloadRecord:
    """Arm the download listener, fire the trigger, then save and validate the file.

    The listener is registered before the click so a fast download cannot be
    missed. Nothing here retries; a second click could start a second download.
    """

    log_event(
        logger=logger,
        phase="download",
        message="Triggering download",
        selector=trigger_selector,
        trigger_type=trigger_type,
    )
    try:
        async with page.expect_download(timeout=timeout_ms) as download_info:
            try:
                # submit triggers are plain buttons on this portal; both types click
                await page.locator(trigger_selector).first.click()
            except Exception as exc:
                raise DownloadError(f"Download trigger could not be clicked: {exc}") from exc
        download = await download_info.value
    except DownloadError:
        raise
    except PlaywrightTimeoutError as exc:
        logger.error(phase="download", message="Download did not start within timeout", timeout_ms=timeout_ms)
        raise DownloadTimeoutError(f"Download did not start within {timeout_ms}ms") from exc

    directory.mkdir(parents=True, exist_ok=True)
    target = directory / Path(download.suggested_filename).name
    await download.save_as(str(target))
    log_event(logger=logger, phase="download", message="Download saved", path=str(target))

    if not validate_download(target, pattern, min_bytes, logger=logger):
        with contextlib.suppress(OSError):
            target.unlink()
        raise DownloadValidationError(f"Downloaded file failed verification: {target.name}")

    return DownloadRecord(path=target, size_bytes=target.stat().st_size, created_at=datetime.now(timezone.utc))


# ── manifest (cross-run idempotency) ─────────────────────────────────


def _read_manifest(directory: Path) -> Dict[str, Any]:
    manifest_path = directory / MANIFEST_NAME
    if not manifest_path.is_file():
        return {"downloads": []}
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {"downloads": []}
    if not isinstance(data, dict) or not isinstance(data.get("downloads"), list):
        return {"downloads": []}
    return data


def record_download(directory: Path, record: DownloadRecord, *, report: str, from_date: str, to_date: str) -> Path:
    manifest = _read_manifest(directory)
    entry = {
        **asdict(record),
        "path": record.path.name,
        "report": report,
        "from": from_date,
        "to": to_date,
    }
    manifest["downloads"].append(entry)
    manifest_path = directory / MANIFEST_NAME
    manifest_path.write_text(json.dumps(manifest, indent=2, default=str), encoding="utf-8")
    return manifest_path


def find_recorded_download(
    run_dir: Path,
    *,
    report: str,
    from_date: str,
    to_date: str,
    pattern: re.Pattern[str],
) -> Optional[Path]:
    """Return the file a run's manifest records for this report and date range."""
    for entry in reversed(_read_manifest(run_dir)["downloads"]):
        if (entry.get("report"), entry.get("from"), entry.get("to")) != (report, from_date, to_date):
            continue
        candidate = run_dir / str(entry.get("path", ""))
        if not candidate.is_file() or is_partial(candidate.name) or not pattern.search(candidate.name):
            continue
        if candidate.stat().st_size > 0:
            return candidate
    return None


def find_previous_download(
    root: Path,
    *,
    report: str,
    from_date: str,
    to_date: str,
    pattern: re.Pattern[str],
    logger: JsonLogger,
) -> Optional[Path]:
    """Search every run's manifest under ``root`` for a completed download with the same parameters."""
    if not root.is_dir():
        return None
    for run_dir in sorted((path for path in root.iterdir() if path.is_dir()), reverse=True):
        candidate = find_recorded_download(
            run_dir, report=report, from_date=from_date, to_date=to_date, pattern=pattern
        )
        if candidate is not None:
            log_event(
                logger=logger,
                phase="download",
                message="Previous run already downloaded this report",
                path=str(candidate),
                previous_run=run_dir.name,
            )
            return candidate
    return None


def directory_stats(directory: Path) -> DownloadStats:
    stats = DownloadStats()
    if not directory.is_dir():
        return stats
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.name == MANIFEST_NAME:
            continue
        size = path.stat().st_size
        stats.count += 1
        stats.total_bytes += size
        stats.files.append(
            {
                "name": path.name,
                "size_bytes": size,
                "modified_at": datetime.fromtimestamp(path.stat().st_mtime, timezone.utc).isoformat(),
            }
        )
    return stats
