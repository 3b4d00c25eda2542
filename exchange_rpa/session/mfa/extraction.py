"""Pure filtering and code extraction over fetched mailbox messages."""
from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

DEFAULT_SENDER_PATTERNS = ("hhaexchange", "noreply")

# Ordered most specific first; the bare six-digit match is the last resort.
CODE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"verification code is:?\s*([0-9]{6})",
        r"your code is:?\s*([0-9]{6})",
        r"security code:?\s*([0-9]{6})",
        r"([0-9]{6})\s*is your verification code",
        r"code:\s*([0-9]{6})",
        r"\b([0-9]{6})\b",
    )
)

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_SPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class MailMessage:
    sender: str
    subject: str
    body: str
    received_at: datetime


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def html_to_text(body: str) -> str:
    if "<" not in body:
        return body
    stripped = _BLOCK_RE.sub(" ", body)
    stripped = _TAG_RE.sub(" ", stripped)
    return _SPACE_RE.sub(" ", html.unescape(stripped)).strip()


def filter_by_time(messages: Iterable[MailMessage], since: datetime) -> List[MailMessage]:
    threshold = _as_utc(since)
    return [message for message in messages if _as_utc(message.received_at) >= threshold]


def filter_by_sender(
    messages: Iterable[MailMessage], patterns: Sequence[str] = DEFAULT_SENDER_PATTERNS
) -> List[MailMessage]:
    lowered = [pattern.lower() for pattern in patterns]
    return [
        message
        for message in messages
        if any(pattern in (message.sender or "").lower() for pattern in lowered)
    ]


def extract_code(body: str) -> Optional[str]:
    text = html_to_text(body or "")
    for pattern in CODE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def select_code(
    messages: Iterable[MailMessage],
    since: datetime,
    sender_patterns: Sequence[str] = DEFAULT_SENDER_PATTERNS,
) -> Optional[str]:
    """Return the code from the newest qualifying message, if any."""
    candidates = filter_by_sender(filter_by_time(messages, since), sender_patterns)
    candidates.sort(key=lambda message: _as_utc(message.received_at), reverse=True)
    for message in candidates:
        code = extract_code(f"{message.subject}\n{message.body}")
        if code:
            return code
    return None
