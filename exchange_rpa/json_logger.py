"""Structured JSON logger for report and caregiver runs."""
from __future__ import annotations

import json
import re
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

__all__ = ["JsonLogger", "log_event", "timed_event", "new_run_id", "REDACTED"]

REDACTED = "***REDACTED***"

_LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}
_STATUS_LEVELS = {"debug": "debug", "ok": "info", "info": "info", "warn": "warn", "error": "error"}
_INLINE_SECRET = re.compile(r"(password|passwd|secret|token)([\"']?\s*[=:]\s*[\"']?)([^\s\"',&}]+)", re.IGNORECASE)


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S%f")


def _default_log_file_path(run_id: str) -> str | None:
    from exchange_rpa.config import config

    raw = config.logs_root.strip()
    if not raw:
        return None
    return str(Path(raw) / f"{run_id}.log")


def _default_level() -> str:
    from exchange_rpa.config import config

    return config.log_level


_AUTO = object()


class JsonLogger:
    """Emit newline-delimited JSON events with registered secrets masked."""

    def __init__(
        self,
        run_id: Optional[str] = None,
        stream=None,
        *,
        log_file_path: str | None | object = _AUTO,
        level: str | None = None,
    ):
        self.run_id = run_id or new_run_id()
        self.stream = stream or sys.stdout
        self.default_context: Dict[str, Any] = {"run_id": self.run_id}
        self.level = (level or _default_level()).lower()
        if log_file_path is _AUTO:
            file_path = _default_log_file_path(self.run_id)
        else:
            file_path = log_file_path
        self.log_file_path = self._resolve_path(file_path)
        self.file_handle = (
            open(self.log_file_path, "a", encoding="utf-8") if self.log_file_path else None
        )
        self._owns_file_handle = self.file_handle is not None
        self._owns_state = True
        self._state: Dict[str, Any] = {"closed": False, "secrets": []}

    def bind(self, **kwargs: Any) -> "JsonLogger":
        child = JsonLogger(run_id=self.run_id, stream=self.stream, log_file_path=None, level=self.level)
        child.default_context = {**self.default_context, **kwargs}
        child.file_handle = self.file_handle
        child.log_file_path = self.log_file_path
        child._owns_state = False
        child._state = self._state
        child._owns_file_handle = False
        return child

    @staticmethod
    def _resolve_path(raw_path: str | None) -> str | None:
        if not raw_path:
            return None
        path = Path(raw_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)

    @property
    def closed(self) -> bool:
        return self._state["closed"]

    @property
    def secrets(self) -> List[str]:
        return self._state["secrets"]

    def register_secret(self, value: str | None) -> None:
        """Mask ``value`` in every event emitted by this logger and its children."""
        if value and value not in self._state["secrets"]:
            self._state["secrets"].append(value)
            # longest first so overlapping secrets are fully masked
            self._state["secrets"].sort(key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self._state["secrets"]:
            text = text.replace(secret, REDACTED)
            escaped = json.dumps(secret, ensure_ascii=False)[1:-1]
            if escaped != secret:
                text = text.replace(escaped, REDACTED)
        return _INLINE_SECRET.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)

    def enabled_for(self, status: str) -> bool:
        wanted = _LEVELS.get(_STATUS_LEVELS.get(status, "info"), 20)
        return wanted >= _LEVELS.get(self.level, 20)

    def _emit(self, payload: Dict[str, Any]) -> None:
        if self.closed:
            return
        event = {**self.default_context, **payload}
        event.setdefault("ts", datetime.now(timezone.utc).isoformat())
        encoded = self.redact(json.dumps(event, default=str, ensure_ascii=False))
        self.stream.write(encoded + "\n")
        self.stream.flush()
        if self.file_handle:
            self.file_handle.write(encoded + "\n")
            self.file_handle.flush()

    def info(self, *, phase: str, status: str = "ok", message: str = "", **fields: Any) -> None:
        if self.closed or not self.enabled_for(status):
            return
        payload = {"phase": phase, "status": status, "message": message, **fields}
        self._emit(payload)

    def debug(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="debug", message=message, **fields)

    def warn(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="warn", message=message, **fields)

    def error(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="error", message=message, **fields)

    def close(self) -> None:
        if not self._owns_state:
            return
        if self.closed:
            return
        self._state["closed"] = True
        if self.file_handle and self._owns_file_handle:
            self.file_handle.close()
            self.file_handle = None

    def __del__(self) -> None:  # pragma: no cover
        try:
            self.close()
        except Exception:
            pass


def log_event(*, logger: JsonLogger, phase: str, status: str = "ok", message: str = "", **extras: Any) -> None:
    logger.info(phase=phase, status=status, message=message, **extras)


@contextmanager
def timed_event(*, logger: JsonLogger, phase: str, message: str = "", **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
        duration = int((time.perf_counter() - start) * 1000)
        logger.info(phase=phase, status="ok", message=message, duration_ms=duration, **fields)
    except Exception as exc:
        duration = int((time.perf_counter() - start) * 1000)
        logger.error(
            phase=phase,
            message=f"{message} failed: {exc}",
            duration_ms=duration,
            exception=repr(exc),
            **fields,
        )
        raise
