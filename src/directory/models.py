"""
Data model for the store directory.

StoreRecord mirrors a persisted row of the record store; StoreInput is the
pre-persistence shape produced by the add/edit form and the CSV importer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import ValidationError


class RecencyStatus(Enum):
    """Call-recency bucket derived from last_called."""
    PENDING = "Pending"  # never contacted
    RECENT = "Recent"    # <= 7 days
    STALE = "Stale"      # 8..30 days
    OLD = "Old"          # > 30 days


_PHONE_FORMATTING_RE = re.compile(r"[()\s./-]+")
# "5551234.0": a number that went through a spreadsheet as a float
_SPREADSHEET_DECIMAL_RE = re.compile(r"^(\+?\d+)\.0+$")


def normalize_phone_number(raw: Any) -> int:
    """
    Parse user-entered phone text into the integer stored by the record store.

    Accepts common formats such as ``5551234``, ``555-1234``, ``(555) 123 4567``
    and ``+15551234567``. A spreadsheet float such as ``5551234.0`` keeps its
    integer part. Formatting characters are stripped; anything left that
    is not a digit is rejected.
    """
    if isinstance(raw, bool):
        raise ValidationError("Invalid phone number")
    if isinstance(raw, int):
        return raw

    s = ("" if raw is None else str(raw)).strip()
    if not s:
        raise ValidationError("Phone number is required")
    if re.search(r"[A-Za-z]", s):
        raise ValidationError(f"Invalid phone number '{s}' (letters not allowed)")

    digits = _PHONE_FORMATTING_RE.sub("", _SPREADSHEET_DECIMAL_RE.sub(r"\1", s))
    if digits.startswith("+"):
        digits = digits[1:]
    if not digits or not digits.isdigit():
        raise ValidationError(f"Invalid phone number '{s}'")
    return int(digits)


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class StoreInput:
    """Unvalidated store fields as typed by an operator or read from CSV."""
    phone_number: str
    location: str = ""
    store_name: str = ""

    def to_payload(self) -> Dict[str, Any]:
        """Wire payload for insert/update. Raises ValidationError on a bad phone number."""
        return {
            "phone_number": normalize_phone_number(self.phone_number),
            "store_name": self.store_name,
            "location": self.location,
        }


@dataclass(frozen=True)
class StoreRecord:
    """
    A persisted store.

    ``id`` and ``created_at`` are assigned by the record store and never change.
    An empty ``last_called`` means the store has never been contacted.
    ``transcript`` is carried for completeness and is always empty here.
    """
    id: str
    created_at: str
    phone_number: int
    store_name: str = ""
    location: str = ""
    last_called: str = ""
    created: Optional[str] = None
    transcript: str = field(default="", compare=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StoreRecord":
        """
        Build a record from a record-store row, filling absent optionals with ''.

        Raises ValueError when the row has no id or no usable phone number.
        """
        if not isinstance(row, dict) or row.get("id") is None:
            raise ValueError("record row is missing 'id'")
        try:
            phone_number = normalize_phone_number(row.get("phone_number"))
        except ValidationError as e:
            raise ValueError(f"record row {row['id']} has no valid phone_number: {e.message}") from e
        return cls(
            id=str(row["id"]),
            created_at=_as_str(row.get("created_at")),
            phone_number=phone_number,
            store_name=_as_str(row.get("store_name")),
            location=_as_str(row.get("location")),
            last_called=_as_str(row.get("last_called")),
            created=row.get("created"),
            transcript="",
        )

    @property
    def is_pending(self) -> bool:
        return not self.last_called

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "created": self.created,
            "phone_number": self.phone_number,
            "store_name": self.store_name,
            "location": self.location,
            "last_called": self.last_called,
            "transcript": self.transcript,
        }
