"""
Tolerant CSV import for store lists.

Columns are located by substring match on the header row, so "Phone Number",
"phone" and "store_phone" all resolve to the phone column:

  - header containing "phone"              -> phone_number (required)
  - header containing "location"           -> location (optional)
  - header containing "store" or "name"    -> store_name (optional)

Known limitation: fields are split on every comma. A quoted field keeps its
embedded commas split apart; only one leading and one trailing double quote
are stripped from each value.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

import structlog

from .errors import FormatError
from .models import StoreInput

logger = structlog.get_logger(__name__)


def _decode(raw: Union[str, bytes, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8-sig", errors="replace")
    return raw.lstrip("\ufeff")


def _find_column(headers: Sequence[str], *needles: str) -> Optional[int]:
    for idx, header in enumerate(headers):
        if any(n in header for n in needles):
            return idx
    return None


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value


def _field(values: Sequence[str], idx: Optional[int]) -> str:
    if idx is None or idx >= len(values):
        return ""
    return values[idx]


def parse_store_csv(raw: Union[str, bytes, None]) -> List[StoreInput]:
    """
    Parse comma-delimited text into StoreInput rows, preserving line order.

    Rows with an empty phone field are dropped. An empty result is returned
    as-is; callers decide whether "no valid rows" is an error.

    Raises:
        FormatError: fewer than two non-blank lines, or no phone-like header.
    """
    text = _decode(raw)
    lines = [line for line in text.split("\n") if line.strip()]
    if len(lines) < 2:
        raise FormatError("CSV must have at least a header row and one data row")

    headers = [h.strip().casefold() for h in lines[0].split(",")]
    phone_idx = _find_column(headers, "phone")
    if phone_idx is None:
        raise FormatError("CSV must include a phone number column")
    location_idx = _find_column(headers, "location")
    name_idx = _find_column(headers, "store", "name")

    rows: List[StoreInput] = []
    dropped = 0
    for line in lines[1:]:
        values = [_strip_quotes(v) for v in line.split(",")]
        phone = _field(values, phone_idx)
        if not phone:
            dropped += 1
            continue
        rows.append(
            StoreInput(
                phone_number=phone,
                location=_field(values, location_idx),
                store_name=_field(values, name_idx),
            )
        )

    logger.debug("Parsed store CSV", rows=len(rows), dropped=dropped, columns=len(headers))
    return rows
