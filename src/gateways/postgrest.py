"""
Record store backed by a PostgREST table (e.g. a Supabase project).

Each operation is one HTTP request against ``{url}/rest/v1/{table}``:

    list                    GET     ?select=*&order=created_at.desc
    insert / bulk_insert    POST    body: row or list of rows
    update                  PATCH   ?id=eq.<id>
    delete                  DELETE  ?id=eq.<id>
    bulk_update_last_called PATCH   ?id=in.(<ids>)   body: {"last_called": <date>}

Non-2xx responses raise RemoteError with the backend's message; network
failures and timeouts raise GatewayConnectionError.
"""

import asyncio
import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote

import aiohttp
import structlog

from src.directory.errors import GatewayConnectionError, RemoteError
from src.directory.models import StoreInput, StoreRecord
from src.gateways.base import RecordStoreGateway

logger = structlog.get_logger(__name__)


def _redact(text: str) -> str:
    return re.sub(r"(api_key|apikey|key|token|auth)=([^&]+)", r"\1=***", text, flags=re.IGNORECASE)


def _error_message(status: int, body_text: str) -> str:
    try:
        data = json.loads(body_text) if body_text else None
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error_description", "error", "hint"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    preview = (body_text or "").strip()[:200]
    return preview or f"Record store returned HTTP {status}"


class PostgrestRecordStore(RecordStoreGateway):

    def __init__(self, url: str, api_key: str = "", table: str = "voice agent", timeout_ms: int = 10000):
        if not url:
            raise ValueError("PostgREST record store requires a url")
        self.table = table
        self.timeout_ms = timeout_ms
        self._endpoint = f"{url.rstrip('/')}/rest/v1/{quote(table, safe='')}"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        operation: str,
        *,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        prefer: Optional[str] = "return=representation",
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        logger.debug("Record store request", operation=operation, method=method,
                     table=self.table, url=_redact(self._endpoint))

        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method=method,
                    url=self._endpoint,
                    params=params,
                    headers=headers,
                    json=body,
                ) as response:
                    status = response.status
                    body_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            # UnicodeDecodeError: response body is not valid text in its declared charset
            logger.warning("Record store unreachable", operation=operation, error=str(e) or type(e).__name__)
            raise GatewayConnectionError("Failed to connect to record store") from e

        if not 200 <= status < 300:
            message = _error_message(status, body_text)
            logger.warning("Record store request failed", operation=operation, status=status, error=message)
            raise RemoteError(message)

        if not body_text:
            return None
        try:
            return json.loads(body_text)
        except ValueError as e:
            raise RemoteError("Unexpected response from record store") from e

    @staticmethod
    def _records(data: Any, operation: str) -> List[StoreRecord]:
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise RemoteError(f"Unexpected {operation} response from record store")
        try:
            return [StoreRecord.from_row(row) for row in data]
        except ValueError as e:
            logger.warning("Record store returned a malformed row", operation=operation, error=str(e))
            raise RemoteError(f"Unexpected {operation} response from record store") from e

    @staticmethod
    def _id_filter(record_ids: Iterable[str]) -> str:
        quoted = ",".join('"' + str(i).replace('"', '') + '"' for i in record_ids)
        return f"in.({quoted})"

    async def list(self) -> List[StoreRecord]:
        data = await self._request(
            "GET", "list",
            params={"select": "*", "order": "created_at.desc"},
            prefer=None,
        )
        return self._records(data or [], "list")

    async def insert(self, data: StoreInput) -> StoreRecord:
        records = self._records(await self._request("POST", "insert", body=data.to_payload()), "insert")
        if not records:
            raise RemoteError("Record store returned no inserted row")
        return records[0]

    async def update(self, record_id: str, data: StoreInput) -> StoreRecord:
        records = self._records(
            await self._request("PATCH", "update", params={"id": f"eq.{record_id}"}, body=data.to_payload()),
            "update",
        )
        if not records:
            raise RemoteError("Store not found")
        return records[0]

    async def delete(self, record_id: str) -> None:
        await self._request("DELETE", "delete", params={"id": f"eq.{record_id}"}, prefer="return=minimal")

    async def bulk_insert(self, rows: Sequence[StoreInput]) -> List[StoreRecord]:
        if not rows:
            return []
        payload = [row.to_payload() for row in rows]
        data = await self._request("POST", "bulk_insert", body=payload)
        return self._records(data or [], "bulk_insert")

    async def bulk_update_last_called(self, record_ids: Iterable[str], called_on: str) -> None:
        ids = sorted({str(i) for i in record_ids})
        if not ids:
            return
        await self._request(
            "PATCH", "bulk_update_last_called",
            params={"id": self._id_filter(ids)},
            body={"last_called": called_on},
            prefer="return=minimal",
        )
