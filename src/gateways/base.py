"""
Gateway contracts the store directory depends on.

The DirectoryController talks to two external systems only through these
interfaces: a persistent record store and a call-dispatch action. Concrete
backends live alongside this module.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from src.directory.models import StoreInput, StoreRecord


@dataclass(frozen=True)
class CallResult:
    """Outcome reported by the call-dispatch action."""
    success: bool
    error: Optional[str] = None


class RecordStoreGateway(ABC):
    """
    Remote collection of store records.

    Every operation either succeeds completely or raises RemoteError
    (structured backend failure) / GatewayConnectionError (transport).
    Callers must not assume partial success after a raise.
    """

    @abstractmethod
    async def list(self) -> List[StoreRecord]:
        """All records, newest created first."""
        pass

    @abstractmethod
    async def insert(self, data: StoreInput) -> StoreRecord:
        pass

    @abstractmethod
    async def update(self, record_id: str, data: StoreInput) -> StoreRecord:
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        pass

    @abstractmethod
    async def bulk_insert(self, rows: Sequence[StoreInput]) -> List[StoreRecord]:
        """Insert rows in one request; returned records keep input order."""
        pass

    @abstractmethod
    async def bulk_update_last_called(self, record_ids: Iterable[str], called_on: str) -> None:
        """Set last_called=called_on on every id in the set."""
        pass

    async def close(self) -> None:
        """Release any held resources. Default: nothing to release."""
        return None


class CallDispatchGateway(ABC):
    """Remote action that attempts to place a call to a phone number."""

    @abstractmethod
    async def call_store(self, phone_number: int) -> CallResult:
        """
        Returns the reported outcome. Raises GatewayConnectionError when the
        action could not be reached or its response could not be read.
        """
        pass

    async def close(self) -> None:
        return None
