"""
Shared pytest fixtures for store directory tests.

Provides a scripted call dispatcher, a seeded in-memory record store and a
controller wired to both with a fixed clock.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.directory.controller import DirectoryController
from src.directory.models import StoreRecord
from src.directory.notifications import NotificationLog
from src.gateways.base import CallDispatchGateway, CallResult
from src.gateways.memory import InMemoryRecordStore

FIXED_NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
FIXED_TODAY = "2024-03-15"


class ScriptedDispatcher(CallDispatchGateway):
    """
    Call dispatcher returning scripted outcomes per phone number.

    An outcome may be a CallResult or an exception instance to raise.
    Unscripted numbers succeed.
    """

    def __init__(self, outcomes: Optional[Dict[int, Union[CallResult, Exception]]] = None):
        self.outcomes = outcomes or {}
        self.calls: List[int] = []

    async def call_store(self, phone_number: int) -> CallResult:
        self.calls.append(phone_number)
        outcome = self.outcomes.get(phone_number, CallResult(success=True))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_record(record_id: str, phone: int = 5551234, last_called: str = "",
                store_name: str = "", location: str = "",
                created_at: str = "2024-01-01T00:00:00+00:00") -> StoreRecord:
    return StoreRecord(
        id=record_id,
        created_at=created_at,
        phone_number=phone,
        store_name=store_name,
        location=location,
        last_called=last_called,
    )


def mock_aiohttp_session(status: int = 200, body: str = ""):
    """
    Build (client_factory, session) mocks for ``patch("aiohttp.ClientSession")``.

    ``session.request`` returns an async context manager yielding a response
    with the given status and text body.
    """
    response = AsyncMock()
    response.status = status
    response.text = AsyncMock(return_value=body)

    session = MagicMock()
    session.request = MagicMock(return_value=AsyncMock(
        __aenter__=AsyncMock(return_value=response),
        __aexit__=AsyncMock(return_value=None),
    ))
    return response, session


@pytest.fixture
def dispatcher():
    return ScriptedDispatcher()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def notifications():
    return NotificationLog()


@pytest.fixture
def controller(record_store, dispatcher, notifications):
    return DirectoryController(
        record_store,
        dispatcher,
        notifier=notifications,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture(name="make_record")
def make_record_fixture():
    return make_record


@pytest.fixture(name="mock_http")
def mock_http_fixture():
    return mock_aiohttp_session


@pytest.fixture(name="scripted_dispatcher")
def scripted_dispatcher_fixture():
    return ScriptedDispatcher
