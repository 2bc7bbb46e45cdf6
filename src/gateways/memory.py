"""
In-process record store.

Backs the directory when no remote database is configured (local runs,
demos, tests). Behaves like the PostgREST backend: ids and created_at are
assigned on insert, list() is newest-first, unknown ids on update raise
RemoteError.
"""

import asyncio
import itertools
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from src.directory.errors import RemoteError
from src.directory.models import StoreInput, StoreRecord
from src.gateways.base import RecordStoreGateway

logger = structlog.get_logger(__name__)


class InMemoryRecordStore(RecordStoreGateway):

    def __init__(self, records: Optional[Iterable[StoreRecord]] = None):
        self._records: Dict[str, Tuple[int, StoreRecord]] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()
        for record in records or ():
            self._records[record.id] = (next(self._seq), record)

    def _new_record(self, data: StoreInput) -> StoreRecord:
        payload = data.to_payload()
        now = datetime.now(timezone.utc)
        return StoreRecord(
            id=str(uuid.uuid4()),
            created_at=now.isoformat(),
            created=now.date().isoformat(),
            phone_number=payload["phone_number"],
            store_name=payload["store_name"],
            location=payload["location"],
        )

    async def list(self) -> List[StoreRecord]:
        async with self._lock:
            ordered = sorted(self._records.values(), key=lambda e: (e[1].created_at, e[0]), reverse=True)
            return [record for _, record in ordered]

    async def insert(self, data: StoreInput) -> StoreRecord:
        async with self._lock:
            record = self._new_record(data)
            self._records[record.id] = (next(self._seq), record)
            logger.debug("Store inserted", store_id=record.id)
            return record

    async def update(self, record_id: str, data: StoreInput) -> StoreRecord:
        async with self._lock:
            entry = self._records.get(record_id)
            if entry is None:
                raise RemoteError("Store not found")
            payload = data.to_payload()
            seq, current = entry
            updated = replace(
                current,
                phone_number=payload["phone_number"],
                store_name=payload["store_name"],
                location=payload["location"],
            )
            self._records[record_id] = (seq, updated)
            return updated

    async def delete(self, record_id: str) -> None:
        async with self._lock:
            self._records.pop(record_id, None)

    async def bulk_insert(self, rows: Sequence[StoreInput]) -> List[StoreRecord]:
        async with self._lock:
            # Build every record before storing any so a bad row leaves the store untouched.
            created = [self._new_record(row) for row in rows]
            for record in created:
                self._records[record.id] = (next(self._seq), record)
            return created

    async def bulk_update_last_called(self, record_ids: Iterable[str], called_on: str) -> None:
        async with self._lock:
            for record_id in set(record_ids):
                entry = self._records.get(record_id)
                if entry is None:
                    continue
                seq, current = entry
                self._records[record_id] = (seq, replace(current, last_called=called_on))
