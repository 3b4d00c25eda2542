from __future__ import annotations

import asyncio
import email
import imaplib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Sequence

from exchange_rpa.session.mfa.extraction import MailMessage

PROVIDER_HOSTS = {
    "outlook.com": "outlook.office365.com",
    "hotmail.com": "outlook.office365.com",
    "gmail.com": "imap.gmail.com",
}
SUBJECT_KEYWORDS = ("HHAeXchange", "Authentication Code", "verification", "code")
SEARCH_WINDOW = timedelta(minutes=5)
MAX_MESSAGES = 10


def imap_host_for(address: str) -> str:
    domain = address.rsplit("@", 1)[-1].strip().lower()
    return PROVIDER_HOSTS.get(domain, f"imap.{domain}")


def _decode(value: str | None) -> str:
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (LookupError, UnicodeDecodeError, ValueError):
        return value


def _message_body(message: Message) -> str:
    parts: List[str] = []
    html_parts: List[str] = []
    for part in message.walk() if message.is_multipart() else [message]:
        content_type = part.get_content_type()
        if content_type not in {"text/plain", "text/html"}:
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            continue
        charset = part.get_content_charset() or "utf-8"
        text = payload.decode(charset, errors="replace")
        (parts if content_type == "text/plain" else html_parts).append(text)
    return "\n".join(parts or html_parts)


def _received_at(message: Message) -> datetime:
    raw = message.get("Date")
    if raw:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def parse_message(raw: bytes) -> MailMessage:
    message = email.message_from_bytes(raw)
    return MailMessage(
        sender=_decode(message.get("From")),
        subject=_decode(message.get("Subject")),
        body=_message_body(message),
        received_at=_received_at(message),
    )


def _subject_criteria(keywords: Sequence[str]) -> str:
    clauses = [f'SUBJECT "{keyword}"' for keyword in keywords]
    criteria = clauses[-1]
    for clause in reversed(clauses[:-1]):
        criteria = f"OR {clause} {criteria}"
    return criteria


@dataclass
class ImapTransport:
    """Fetch recent candidate messages over IMAP SSL."""

    username: str
    password: str = field(repr=False)
    host: str | None = None
    port: int = 993
    mailbox: str = "INBOX"
    subject_keywords: Sequence[str] = SUBJECT_KEYWORDS

    def _fetch_sync(self, since: datetime) -> List[MailMessage]:
        host = self.host or imap_host_for(self.username)
        window_start = min(since, datetime.now(timezone.utc) - SEARCH_WINDOW)
        since_token = window_start.strftime("%d-%b-%Y")
        client = imaplib.IMAP4_SSL(host, self.port)
        try:
            client.login(self.username, self.password)
            client.select(self.mailbox, readonly=True)
            try:
                status, data = client.search(None, f"(SINCE {since_token} {_subject_criteria(self.subject_keywords)})")
                if status != "OK":
                    raise imaplib.IMAP4.error(f"search returned {status}")
            except imaplib.IMAP4.error:
                status, data = client.search(None, "ALL")
            ids = (data[0] or b"").split() if data else []
            messages: List[MailMessage] = []
            for message_id in ids[-MAX_MESSAGES:]:
                status, payload = client.fetch(message_id, "(RFC822)")
                if status != "OK" or not payload:
                    continue
                for item in payload:
                    if isinstance(item, tuple) and len(item) >= 2:
                        messages.append(parse_message(item[1]))
            return messages
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError):
                pass

    async def fetch_candidates(self, recipient: str, since: datetime) -> List[MailMessage]:
        return await asyncio.to_thread(self._fetch_sync, since)
