"""Second-factor code retrieval from the account mailbox."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from exchange_rpa.common import delays
from exchange_rpa.json_logger import JsonLogger, log_event
from exchange_rpa.session.mfa.extraction import (
    DEFAULT_SENDER_PATTERNS,
    MailMessage,
    extract_code,
    filter_by_sender,
    filter_by_time,
    select_code,
)

__all__ = [
    "CodeSource",
    "MailTransport",
    "MailboxCodeSource",
    "MailMessage",
    "build_code_source",
    "extract_code",
    "filter_by_sender",
    "filter_by_time",
    "select_code",
]

DEFAULT_MAX_ATTEMPTS = 18
DEFAULT_INTERVAL_SECONDS = 5.0


class MailTransport(Protocol):
    async def fetch_candidates(self, recipient: str, since: datetime) -> List[MailMessage]:
        ...


class CodeSource(Protocol):
    async def retrieve_code(self, recipient: str, since: datetime) -> Optional[str]:
        ...


@dataclass
class MailboxCodeSource:
    """Poll a mailbox until a fresh code arrives or the attempt budget runs out."""

    transport: MailTransport
    logger: JsonLogger
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    sender_patterns: Sequence[str] = DEFAULT_SENDER_PATTERNS

    async def retrieve_code(self, recipient: str, since: datetime) -> Optional[str]:
        attempts = max(1, self.max_attempts)
        log_event(
            logger=self.logger,
            phase="mfa",
            message="Polling mailbox for verification code",
            transport=type(self.transport).__name__,
            max_attempts=attempts,
            interval_seconds=self.interval_seconds,
        )
        for attempt in range(1, attempts + 1):
            try:
                messages = await self.transport.fetch_candidates(recipient, since)
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="mfa",
                    status="warn",
                    message="Mailbox fetch failed",
                    attempt=attempt,
                    error=str(exc),
                )
                messages = []
            code = select_code(messages, since, self.sender_patterns)
            if code:
                log_event(logger=self.logger, phase="mfa", message="Verification code retrieved", attempt=attempt)
                return code
            self.logger.debug(phase="mfa", message="No qualifying message yet", attempt=attempt, candidates=len(messages))
            if attempt < attempts:
                await delays.pause(self.interval_seconds)
        log_event(
            logger=self.logger,
            phase="mfa",
            status="warn",
            message="No verification code arrived before the polling budget ran out",
            attempts=attempts,
        )
        return None


def build_code_source(app_config, *, logger: JsonLogger) -> Optional[MailboxCodeSource]:
    """Prefer IMAP when a mailbox password is configured, then Graph, else nothing."""
    if app_config.has_imap:
        from exchange_rpa.session.mfa.imap import ImapTransport

        logger.register_secret(app_config.email_password)
        transport = ImapTransport(
            username=app_config.hhae_email,
            password=app_config.email_password,
            host=app_config.imap_host or None,
            port=app_config.imap_port,
        )
        return MailboxCodeSource(transport=transport, logger=logger)
    if app_config.has_graph:
        from exchange_rpa.session.mfa.graph import GraphTransport

        logger.register_secret(app_config.azure_client_secret)
        transport = GraphTransport(
            tenant_id=app_config.azure_tenant_id,
            client_id=app_config.azure_client_id,
            client_secret=app_config.azure_client_secret,
        )
        return MailboxCodeSource(transport=transport, logger=logger)
    log_event(
        logger=logger,
        phase="mfa",
        status="warn",
        message="No mailbox access configured; verification codes must be entered manually",
    )
    return None
