"""
Gateways to the systems the store directory depends on.
"""

from .base import CallDispatchGateway, CallResult, RecordStoreGateway
from .call_dispatch import HttpCallDispatcher
from .memory import InMemoryRecordStore
from .postgrest import PostgrestRecordStore

__all__ = [
    'CallDispatchGateway',
    'CallResult',
    'RecordStoreGateway',
    'HttpCallDispatcher',
    'InMemoryRecordStore',
    'PostgrestRecordStore',
]
