"""Work-board records and the Monday.com GraphQL adapter that supplies them."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from exchange_rpa.json_logger import JsonLogger, log_event

MONDAY_API_URL = "https://api.monday.com/v2"
MONDAY_API_VERSION = "2024-01"
PAGE_LIMIT = 500

DEFAULT_COLUMN_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        "text8": "applicantName",
        "email": "email",
        "phone": "phone",
        "date7": "dateOfBirth",
        "text1": "ssn",
        "text19": "registryNumber",
        "dropdown4": "certificationType",
        "languages_spoken": "languages",
        "preferred_locations": "preferredLocations",
        "dropdown__1": "hasCar",
        "dropdown6": "availability",
        "dropdown2": "preferredShift",
        "date4": "applicationDate",
    }
)

ITEMS_QUERY = """
query ($boardId: [ID!], $cursor: String) {
  boards(ids: $boardId) {
    items_page(limit: %d, cursor: $cursor) {
      cursor
      items {
        id
        name
        column_values {
          id
          text
        }
      }
    }
  }
}
""" % PAGE_LIMIT

STATUS_MUTATION = """
mutation ($boardId: ID!, $itemId: ID!, $columnId: String!, $value: String!) {
  change_simple_column_value(board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value) {
    id
    name
  }
}
"""


class BoardApiError(RuntimeError):
    """Raised when the work board API rejects a request."""


@dataclass(frozen=True)
class CaregiverRecord:
    record_id: str
    name: str
    fields: Mapping[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str = "") -> str:
        value = self.fields.get(key)
        return default if value is None else value


class RecordSource(Protocol):
    async def fetch_records(self, filter_key: str, filter_value: str) -> List[CaregiverRecord]:
        ...

    async def update_status(self, record_id: str, new_status: str) -> None:
        ...


@dataclass(frozen=True)
class BoardSettings:
    board_id: str = "6119848729"
    status_column: str = "status"
    ready_value: str = "Active"
    completed_value: str = "Entered in HHA Exchange"
    column_mapping: Mapping[str, str] = field(default_factory=lambda: DEFAULT_COLUMN_MAPPING)


def parse_item(item: Mapping[str, Any], column_mapping: Mapping[str, str]) -> CaregiverRecord:
    fields: Dict[str, str] = {}
    for column in item.get("column_values") or []:
        target = column_mapping.get(column.get("id"))
        if target:
            fields[target] = column.get("text") or ""
    item_name = item.get("name") or ""
    return CaregiverRecord(
        record_id=str(item.get("id")),
        name=fields.get("applicantName") or item_name,
        fields=MappingProxyType(fields),
    )


def _column_text(item: Mapping[str, Any], column_id: str) -> Optional[str]:
    for column in item.get("column_values") or []:
        if column.get("id") == column_id:
            return column.get("text")
    return None


class MondayBoardClient:
    def __init__(
        self,
        api_token: str,
        *,
        logger: JsonLogger,
        settings: BoardSettings = BoardSettings(),
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not api_token:
            raise BoardApiError("MONDAY_API_TOKEN is not configured")
        self.settings = settings
        self.logger = logger
        self._api_token = api_token
        self._transport = transport
        self._timeout = timeout_seconds
        logger.register_secret(api_token)

    async def _execute(self, client: httpx.AsyncClient, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.post(
            MONDAY_API_URL,
            json={"query": query, "variables": variables},
            headers={
                "Content-Type": "application/json",
                "Authorization": self._api_token,
                "API-Version": MONDAY_API_VERSION,
            },
        )
        if response.status_code >= 400:
            raise BoardApiError(f"Monday.com API error: {response.status_code} {response.reason_phrase}")
        payload = response.json()
        errors = payload.get("errors")
        if errors:
            raise BoardApiError(f"Monday.com API error: {errors[0].get('message', errors[0])}")
        return payload.get("data") or {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def fetch_items(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cursor: str | None = None
        async with self._client() as client:
            while True:
                data = await self._execute(client, ITEMS_QUERY, {"boardId": [self.settings.board_id], "cursor": cursor})
                boards = data.get("boards") or []
                page = boards[0].get("items_page") if boards else None
                if not page or not page.get("items"):
                    break
                items.extend(page["items"])
                cursor = page.get("cursor")
                self.logger.debug(phase="board", message="Fetched board page", fetched=len(items))
                if not cursor:
                    break
        return items

    async def fetch_records(self, filter_key: str, filter_value: str) -> List[CaregiverRecord]:
        items = await self.fetch_items()
        wanted = (filter_value or "").lower()
        matching = [item for item in items if (_column_text(item, filter_key) or "").lower() == wanted]
        log_event(
            logger=self.logger,
            phase="board",
            message="Fetched board records",
            board_id=self.settings.board_id,
            total=len(items),
            matching=len(matching),
            filter_value=filter_value,
        )
        return [parse_item(item, self.settings.column_mapping) for item in matching]

    async def update_status(self, record_id: str, new_status: str) -> None:
        async with self._client() as client:
            await self._execute(
                client,
                STATUS_MUTATION,
                {
                    "boardId": self.settings.board_id,
                    "itemId": record_id,
                    "columnId": self.settings.status_column,
                    "value": new_status,
                },
            )
        log_event(logger=self.logger, phase="board", message="Record status updated", record_id=record_id, new_status=new_status)
