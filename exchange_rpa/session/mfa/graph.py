from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from exchange_rpa.session.mfa.extraction import MailMessage

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MAX_MESSAGES = 10


def _parse_graph_datetime(raw: str | None) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def message_from_graph(item: Dict[str, Any]) -> MailMessage:
    sender = ((item.get("from") or {}).get("emailAddress") or {}).get("address") or ""
    body = (item.get("body") or {}).get("content") or item.get("bodyPreview") or ""
    return MailMessage(
        sender=sender,
        subject=item.get("subject") or "",
        body=body,
        received_at=_parse_graph_datetime(item.get("receivedDateTime")),
    )


@dataclass
class GraphTransport:
    """Fetch recent candidate messages through Microsoft Graph (client credentials)."""

    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)
    timeout_seconds: float = 15.0
    transport: Optional[httpx.AsyncBaseTransport] = None
    _token: Optional[str] = field(default=None, repr=False)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if self._token:
            return self._token
        response = await client.post(
            TOKEN_URL.format(tenant=self.tenant_id),
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": GRAPH_SCOPE,
                "grant_type": "client_credentials",
            },
        )
        response.raise_for_status()
        self._token = response.json()["access_token"]
        return self._token

    async def fetch_candidates(self, recipient: str, since: datetime) -> List[MailMessage]:
        since_utc = since.astimezone(timezone.utc) if since.tzinfo else since.replace(tzinfo=timezone.utc)
        async with self._client() as client:
            token = await self._access_token(client)
            response = await client.get(
                f"{GRAPH_BASE_URL}/users/{recipient}/messages",
                headers={"Authorization": f"Bearer {token}"},
                params={
                    "$filter": f"receivedDateTime ge {since_utc.strftime('%Y-%m-%dT%H:%M:%SZ')}",
                    "$orderby": "receivedDateTime desc",
                    "$top": str(MAX_MESSAGES),
                    "$select": "subject,from,receivedDateTime,body,bodyPreview",
                },
            )
            if response.status_code == 401:
                self._token = None
            response.raise_for_status()
        return [message_from_graph(item) for item in response.json().get("value", [])]
