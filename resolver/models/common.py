"""Common types and helpers shared across models."""

from datetime import UTC, datetime
from typing import TypeAlias

OrderId: TypeAlias = str

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
WEI_PER_UNIT = 10**18


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def normalize_order_id(order_id: str | bytes) -> OrderId:
    """Return a lowercase 0x-prefixed hex order id."""
    if isinstance(order_id, (bytes, bytearray)):
        return "0x" + bytes(order_id).hex()
    order_id = order_id.strip().lower()
    if not order_id.startswith("0x"):
        order_id = "0x" + order_id
    return order_id


def same_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive address comparison; empty never matches."""
    if not a or not b:
        return False
    return a.lower() == b.lower()
