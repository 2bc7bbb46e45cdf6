"""
Store directory core.

The data model, error taxonomy, CSV importer and recency helpers are
re-exported here; the DirectoryController lives in
``src.directory.controller``.
"""

from .errors import (
    CallError,
    DirectoryError,
    FormatError,
    GatewayConnectionError,
    LoadError,
    NotFoundError,
    RemoteError,
    ValidationError,
)
from .models import RecencyStatus, StoreInput, StoreRecord, normalize_phone_number

__all__ = [
    'CallError',
    'DirectoryError',
    'FormatError',
    'GatewayConnectionError',
    'LoadError',
    'NotFoundError',
    'RemoteError',
    'ValidationError',
    'RecencyStatus',
    'StoreInput',
    'StoreRecord',
    'normalize_phone_number',
]
