"""ideaboard/services/item_gateway.py

Async gateway to the ``board_items`` collection of a PostgREST-style store
(Supabase REST API). Row-level security is enforced server-side through the
caller's access token; this module only translates HTTP outcomes into the
:mod:`ideaboard.errors` taxonomy.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

import httpx
from pydantic import ValidationError

from ideaboard.core_models import BoardItemRecord, utc_now
from ideaboard.errors import (
    Forbidden,
    GatewayError,
    NotFound,
    RemoteFailure,
    Unauthorized,
    ValidationFailure,
)

if TYPE_CHECKING:
    from ideaboard.config import CanvasSettings

log = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429}
_JSON_COLUMNS = ("position", "size", "content", "metadata")


class ItemGateway(Protocol):
    """What the canvas state engine needs from the item store."""

    async def fetch_by_board(self, board_id: UUID) -> List[BoardItemRecord]: ...

    async def batch_upsert(self, records: Sequence[BoardItemRecord]) -> List[BoardItemRecord]: ...

    async def delete_by_id(self, item_id: UUID) -> bool: ...


class BoardItemGateway:
    """Minimal async wrapper around the REST endpoints of the item table."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        table: str = "board_items",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.table = table
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: "CanvasSettings", access_token: str | None = None) -> "BoardItemGateway":
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            access_token=access_token,
            table=settings.items_table,
            timeout=settings.request_timeout_s,
        )

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def fetch_by_board(self, board_id: UUID) -> List[BoardItemRecord]:
        """Return every item of *board_id* visible to the current token."""
        params = {"board_id": f"eq.{board_id}", "order": "created_at.asc"}
        resp = await self._send("GET", f"GET {self.table}", params=params)
        records = self._parse_records(resp, f"GET {self.table}")
        log.debug("GET %s for board %s returned %d records", self.table, board_id, len(records))
        return records

    async def batch_upsert(self, records: Sequence[BoardItemRecord]) -> List[BoardItemRecord]:
        """Insert-or-update *records* in one request and return the server versions.

        Every record's ``updated_at`` is stamped with the current time before
        sending; rows that already exist are merged on their primary key.
        ``created_at`` is never sent: the store sets it on insert and keeps it
        on merge.

        A bulk upsert needs one key set for the whole array, so the union of
        the row keys is sent as ``columns`` and keys a row lacks take their
        column default.
        """
        if not records:
            return []

        now = utc_now()
        payload = [
            record.model_copy(update={"created_at": None, "updated_at": now}).to_payload()
            for record in records
        ]
        columns = sorted({key for row in payload for key in row})
        resp = await self._send(
            "POST",
            f"UPSERT {self.table}",
            params={"columns": ",".join(columns)},
            json_body=payload,
            prefer="resolution=merge-duplicates,missing=default,return=representation",
        )
        saved = self._parse_records(resp, f"UPSERT {self.table}")
        log.debug("UPSERT %s with %d items returned %d records", self.table, len(payload), len(saved))
        return saved

    async def delete_by_id(self, item_id: UUID) -> bool:
        """Delete one item. Returns False when no row matched (not an error)."""
        try:
            resp = await self._send(
                "DELETE",
                f"DELETE {self.table}",
                params={"id": f"eq.{item_id}"},
                prefer="return=representation",
            )
        except NotFound:
            log.debug("DELETE %s found no record %s", self.table, item_id)
            return False

        rows = self._parse_json(resp, f"DELETE {self.table}") if resp.content else []
        deleted = bool(rows)
        log.debug("DELETE %s id=%s deleted=%s", self.table, item_id, deleted)
        return deleted

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _headers(self, prefer: Optional[str]) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(
        self,
        method: str,
        operation: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        prefer: Optional[str] = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method,
                self.table_url,
                params=params,
                json=json_body,
                headers=self._headers(prefer),
            )
        except httpx.TransportError as exc:
            log.warning("%s failed at transport level: %s", operation, exc)
            raise RemoteFailure(f"{operation} failed: {exc}") from exc
        _raise_for_status(resp, operation)
        return resp

    def _parse_json(self, resp: httpx.Response, operation: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteFailure(f"{operation} returned a body that is not JSON") from exc

    def _parse_records(self, resp: httpx.Response, operation: str) -> List[BoardItemRecord]:
        rows = self._parse_json(resp, operation)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise RemoteFailure(f"{operation} returned {type(rows).__name__}, expected a list")
        try:
            return [BoardItemRecord.model_validate(_normalize_row(row)) for row in rows]
        except (ValidationError, TypeError, ValueError) as exc:
            raise ValidationFailure(f"{operation} returned malformed rows: {exc}") from exc


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """jsonb columns may come back as nested JSON; the record keeps them as text."""
    row = dict(row)
    for column in _JSON_COLUMNS:
        value = row.get(column)
        if value is not None and not isinstance(value, str):
            row[column] = json.dumps(value, separators=(",", ":"))
    return row


def _raise_for_status(resp: httpx.Response, operation: str) -> None:
    if resp.is_success:
        return

    content = resp.text
    status = resp.status_code
    message = f"Item store {operation} failed ({status})"
    log.error("%s: %s", message, content)

    error: GatewayError
    if status == 401:
        error = Unauthorized("Unauthorized access to the item store. Token may be missing or expired.",
                             status_code=status, response_content=content)
    elif status == 403:
        error = Forbidden("Forbidden access to the item store. Check row-level security policies.",
                          status_code=status, response_content=content)
    elif status == 404:
        error = NotFound("Item store resource not found.", status_code=status, response_content=content)
    elif status >= 500 or status in _TRANSIENT_STATUS:
        error = RemoteFailure(f"{message}: {content}", status_code=status, response_content=content)
    else:
        error = ValidationFailure(f"{message}: {content}", status_code=status, response_content=content)
    raise error
