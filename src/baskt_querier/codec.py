"""Codecs at the persistence boundary.

Ledger amounts are unbounded integers; the metadata store keeps them as
decimal strings so they survive any column type losslessly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, PlainSerializer


def decode_amount(value: Any) -> int:
    """Decode a stored amount into an int. ``None`` and ``""`` decode to 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not an amount")
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value)))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc


def decode_optional_amount(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return decode_amount(value)


def encode_amount(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return str(int(value))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate_utc(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return value


Amount = Annotated[int, BeforeValidator(decode_amount), PlainSerializer(encode_amount, return_type=str)]
OptionalAmount = Annotated[
    Optional[int],
    BeforeValidator(decode_optional_amount),
    PlainSerializer(encode_amount, return_type=Optional[str]),
]
UtcDatetime = Annotated[datetime, BeforeValidator(_validate_utc)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
