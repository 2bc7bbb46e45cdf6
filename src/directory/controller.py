"""
DirectoryController - single owner of the in-memory store directory.

All mutations go through the record-store and call-dispatch gateways. The
local list is a mirror of persisted state and follows two rules:

- a local delta is committed only after the remote call it depends on has
  succeeded; a failed call leaves the list untouched
- each delta is applied to the list as it is at commit time, in one step

Every operation catches DirectoryError at its own boundary, emits a
Notification and returns an ActionResult. Nothing here is fatal; a failed
operation can simply be retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

import structlog
from prometheus_client import Counter, Gauge

from .csv_import import parse_store_csv
from .errors import (
    CallError,
    DirectoryError,
    FormatError,
    GatewayConnectionError,
    LoadError,
    NotFoundError,
    ValidationError,
)
from .models import RecencyStatus, StoreInput, StoreRecord, normalize_phone_number
from .notifications import ActionResult, Notifier, log_notifier
from . import status as recency

if TYPE_CHECKING:  # pragma: no cover
    from src.gateways.base import CallDispatchGateway, RecordStoreGateway

logger = structlog.get_logger(__name__)

# Module scope so metrics register once per process. Labels stay low-cardinality:
# never a store id or phone number.
_CALL_DISPATCH_TOTAL = Counter(
    "store_directory_call_dispatch_total",
    "Call-dispatch attempts by outcome",
    labelnames=("outcome",),
)
_GATEWAY_FAILURES_TOTAL = Counter(
    "store_directory_gateway_failures_total",
    "Failed gateway operations by operation and failure kind",
    labelnames=("operation", "kind"),
)
_RECORDS_GAUGE = Gauge(
    "store_directory_records",
    "Number of store records in the local directory mirror",
)

CALL_SUCCESS = "success"
CALL_FAILED = "failed"
CALL_CONNECTION_ERROR = "connection_error"


def _failure_kind(error: DirectoryError) -> str:
    if isinstance(error, GatewayConnectionError):
        return "connection"
    if isinstance(error, (ValidationError, FormatError)):
        return "validation"
    if isinstance(error, CallError):
        return "call"
    return "remote"


class DirectoryController:
    """
    Owns the ordered list of StoreRecord (newest created first).

    Read access goes through ``records``, ``get``, ``search``, ``pending``,
    ``status_of`` and ``counts``; there is no way to mutate the list other
    than the operations below.
    """

    def __init__(
        self,
        record_store: "RecordStoreGateway",
        dispatcher: "CallDispatchGateway",
        *,
        notifier: Optional[Notifier] = None,
        max_concurrent_calls: int = 1,
        mark_only_successful: bool = False,
        clock: Callable[[], datetime] = recency.utcnow,
    ):
        if max_concurrent_calls < 1:
            raise ValueError("max_concurrent_calls must be >= 1")
        self._record_store = record_store
        self._dispatcher = dispatcher
        self._notifier = notifier or log_notifier
        self._max_concurrent_calls = max_concurrent_calls
        self._mark_only_successful = mark_only_successful
        self._clock = clock
        self._records: List[StoreRecord] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def records(self) -> Tuple[StoreRecord, ...]:
        return tuple(self._records)

    def get(self, record_id: str) -> Optional[StoreRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def search(self, term: Optional[str] = "") -> List[StoreRecord]:
        return recency.search(self._records, term)

    def pending(self) -> List[StoreRecord]:
        """Records that have never been called."""
        return [r for r in self._records if r.is_pending]

    def status_of(self, record: StoreRecord) -> RecencyStatus:
        return recency.status_of(record, self._clock())

    def counts(self, term: Optional[str] = "") -> Dict[str, object]:
        return {
            "total": len(self._records),
            "shown": len(self.search(term)),
            "pending": len(self.pending()),
            "by_status": recency.count_by_status(self._records, self._clock()),
        }

    # ------------------------------------------------------------------
    # Commit helpers (the only writers of self._records)
    # ------------------------------------------------------------------

    def _commit(self, records: List[StoreRecord]) -> None:
        self._records = records
        _RECORDS_GAUGE.set(len(records))

    def _commit_replace(self, updated: StoreRecord) -> None:
        self._commit([updated if r.id == updated.id else r for r in self._records])

    def _commit_last_called(self, record_ids: Set[str], called_on: str) -> List[StoreRecord]:
        changed: List[StoreRecord] = []
        records: List[StoreRecord] = []
        for r in self._records:
            if r.id in record_ids:
                r = replace(r, last_called=called_on)
                changed.append(r)
            records.append(r)
        self._commit(records)
        return changed

    def _emit(self, result: ActionResult) -> ActionResult:
        self._notifier(result.notification)
        return result

    def _fail(self, operation: str, title: str, error: DirectoryError, **details) -> ActionResult:
        kind = _failure_kind(error)
        if kind != "validation":
            _GATEWAY_FAILURES_TOTAL.labels(operation=operation, kind=kind).inc()
        logger.warning("Directory operation failed", operation=operation,
                       error_type=type(error).__name__, error=error.message)
        return self._emit(ActionResult.failure(title, error, **details))

    # ------------------------------------------------------------------
    # Load / CRUD
    # ------------------------------------------------------------------

    async def load_all(self) -> ActionResult:
        """Replace local state with the record store's list. The only full resync."""
        try:
            records = await self._record_store.list()
        except DirectoryError as e:
            return self._fail("list", "Error loading stores", LoadError(e.message))

        self._commit(list(records))
        logger.info("Stores loaded", count=len(records))
        return self._emit(ActionResult.success(
            "Stores loaded", f"{len(records)} stores loaded", value=list(records)))

    async def add(self, data: StoreInput) -> ActionResult:
        try:
            normalize_phone_number(data.phone_number)
            record = await self._record_store.insert(data)
        except DirectoryError as e:
            return self._fail("insert", "Error adding store", e)

        self._commit([record] + self._records)
        logger.info("Store added", store_id=record.id)
        return self._emit(ActionResult.success(
            "Store added", "New store has been added successfully", value=record))

    async def edit(self, record_id: str, data: StoreInput) -> ActionResult:
        try:
            if self.get(record_id) is None:
                raise NotFoundError(f"Store {record_id} not found")
            normalize_phone_number(data.phone_number)
            updated = await self._record_store.update(record_id, data)
        except DirectoryError as e:
            return self._fail("update", "Error updating store", e)

        self._commit_replace(updated)
        logger.info("Store updated", store_id=record_id)
        return self._emit(ActionResult.success(
            "Store updated", "Store information has been updated", value=updated))

    async def remove(self, record_id: str) -> ActionResult:
        try:
            await self._record_store.delete(record_id)
        except DirectoryError as e:
            return self._fail("delete", "Error deleting store", e)

        self._commit([r for r in self._records if r.id != record_id])
        logger.info("Store deleted", store_id=record_id)
        return self._emit(ActionResult.success("Store deleted", "Store has been removed", value=record_id))

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def import_batch(self, rows: Sequence[StoreInput]) -> ActionResult:
        """
        Insert a batch in one record-store call.

        Every phone number is validated first; one bad row rejects the whole
        batch. On failure nothing is added locally, even if the backend
        stored part of the batch before failing.
        """
        rows = list(rows)
        try:
            if not rows:
                raise FormatError("No valid store data found in CSV")
            for idx, row in enumerate(rows, start=1):
                try:
                    normalize_phone_number(row.phone_number)
                except ValidationError as e:
                    raise ValidationError(f"Row {idx}: {e.message}") from e
            created = await self._record_store.bulk_insert(rows)
        except DirectoryError as e:
            return self._fail("bulk_insert", "Error uploading stores", e, rows=len(rows))

        self._commit(list(created) + self._records)
        logger.info("Stores imported", count=len(created))
        return self._emit(ActionResult.success(
            "Stores uploaded", f"{len(created)} stores have been added", value=list(created)))

    async def import_text(self, raw: Union[str, bytes]) -> ActionResult:
        """Parse CSV text and import it. Parse failures abort before any gateway call."""
        try:
            rows = parse_store_csv(raw)
        except FormatError as e:
            return self._fail("parse", "Upload failed", e)
        return await self.import_batch(rows)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call_one(self, record: StoreRecord) -> ActionResult:
        """
        Dispatch a call; on reported success persist today's date as
        last_called and mirror it locally once the persistence succeeds.
        """
        try:
            result = await self._dispatcher.call_store(record.phone_number)
        except GatewayConnectionError as e:
            _CALL_DISPATCH_TOTAL.labels(outcome=CALL_CONNECTION_ERROR).inc()
            return self._fail("call_store", "Connection error", e)

        if not result.success:
            _CALL_DISPATCH_TOTAL.labels(outcome=CALL_FAILED).inc()
            return self._fail("call_store", "Call failed", CallError(result.error))
        _CALL_DISPATCH_TOTAL.labels(outcome=CALL_SUCCESS).inc()

        today = recency.today_iso(self._clock())
        try:
            await self._record_store.bulk_update_last_called({record.id}, today)
        except GatewayConnectionError as e:
            return self._fail("bulk_update_last_called", "Connection error", e, call_placed=True)
        except DirectoryError as e:
            return self._fail("bulk_update_last_called", "Error updating store", e, call_placed=True)

        changed = self._commit_last_called({record.id}, today)
        logger.info("Store called", store_id=record.id, called_on=today)
        return self._emit(ActionResult.success(
            "Call dispatched",
            f"Call initiated to {record.phone_number}",
            value=changed[0] if changed else replace(record, last_called=today),
            call_placed=True,
        ))

    async def _attempt_call(self, record: StoreRecord) -> str:
        try:
            result = await self._dispatcher.call_store(record.phone_number)
        except GatewayConnectionError as e:
            logger.warning("Call attempt unreachable", store_id=record.id, error=e.message)
            outcome = CALL_CONNECTION_ERROR
        else:
            outcome = CALL_SUCCESS if result.success else CALL_FAILED
            if not result.success:
                logger.info("Call attempt reported failure", store_id=record.id, error=result.error)
        _CALL_DISPATCH_TOTAL.labels(outcome=outcome).inc()
        return outcome

    async def _attempt_all(self, targets: Sequence[StoreRecord]) -> Dict[str, str]:
        outcomes: Dict[str, str] = {}
        if self._max_concurrent_calls == 1:
            for record in targets:
                outcomes[record.id] = await self._attempt_call(record)
            return outcomes

        semaphore = asyncio.Semaphore(self._max_concurrent_calls)

        async def _bounded(record: StoreRecord) -> None:
            async with semaphore:
                outcomes[record.id] = await self._attempt_call(record)

        await asyncio.gather(*(_bounded(r) for r in targets))
        return outcomes

    async def call_all_pending(self) -> ActionResult:
        """
        Call every never-called store, then persist today's date for the
        attempted set in one bulk update.

        By default every attempted store is marked, whatever its individual
        call outcome. With ``mark_only_successful`` only stores whose call
        reported success are marked.
        """
        targets = self.pending()
        if not targets:
            return self._emit(ActionResult.success(
                "No pending stores", "Every store has already been called", value=[], attempted=0))

        logger.info("Calling pending stores", count=len(targets),
                    max_concurrent=self._max_concurrent_calls)
        outcomes = await self._attempt_all(targets)
        succeeded = sorted(rid for rid, outcome in outcomes.items() if outcome == CALL_SUCCESS)
        details = {
            "attempted": len(outcomes),
            "succeeded": len(succeeded),
            "failed": len(outcomes) - len(succeeded),
        }

        to_mark: Set[str] = set(succeeded) if self._mark_only_successful else set(outcomes)
        if not to_mark:
            return self._fail("call_store", "Call failed",
                              CallError(f"0 of {len(outcomes)} calls succeeded"), **details)

        today = recency.today_iso(self._clock())
        try:
            await self._record_store.bulk_update_last_called(to_mark, today)
        except GatewayConnectionError as e:
            return self._fail("bulk_update_last_called", "Connection error", e, **details)
        except DirectoryError as e:
            return self._fail("bulk_update_last_called", "Error updating stores", e, **details)

        changed = self._commit_last_called(to_mark, today)
        logger.info("Pending stores called", called_on=today, marked=len(changed), **details)
        return self._emit(ActionResult.success(
            "Calls dispatched",
            f"Initiated calls to {len(outcomes)} stores",
            value=changed,
            **details,
        ))
