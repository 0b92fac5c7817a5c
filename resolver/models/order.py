"""Ledger order and event models."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from resolver.models.common import ZERO_ADDRESS, OrderId, normalize_order_id

# Field order of the OrderProtocol.Order struct returned by getOrder.
ORDER_FIELDS = (
    "maker",
    "taker",
    "recipientUpiAddress",
    "amount",
    "startPrice",
    "acceptedPrice",
    "endPrice",
    "startTime",
    "acceptedTime",
    "accepted",
    "fullfilled",
)


class ProcessingState(StrEnum):
    UNSEEN = "unseen"
    PROCESSING = "processing"
    PROCESSED = "processed"


@dataclass(frozen=True)
class Order:
    order_id: OrderId
    maker: str
    taker: str
    recipient_upi: str
    amount: int  # 18-decimal fixed point INR
    start_price: int
    end_price: int
    accepted_price: int
    start_time: int
    accepted_time: int
    accepted: bool
    fulfilled: bool

    @classmethod
    def from_contract(cls, order_id: str | bytes, raw: Any) -> "Order":
        """Build an Order from a getOrder() result (tuple or mapping)."""
        if isinstance(raw, dict):
            values = {name: raw[name] for name in ORDER_FIELDS}
        else:
            values = dict(zip(ORDER_FIELDS, raw))
        return cls(
            order_id=normalize_order_id(order_id),
            maker=values["maker"],
            taker=values["taker"] or ZERO_ADDRESS,
            recipient_upi=values["recipientUpiAddress"],
            amount=int(values["amount"]),
            start_price=int(values["startPrice"]),
            end_price=int(values["endPrice"]),
            accepted_price=int(values["acceptedPrice"]),
            start_time=int(values["startTime"]),
            accepted_time=int(values["acceptedTime"]),
            accepted=bool(values["accepted"]),
            fulfilled=bool(values["fullfilled"]),
        )

    @property
    def has_taker(self) -> bool:
        return bool(self.taker) and self.taker.lower() != ZERO_ADDRESS

    def is_consistent(self) -> bool:
        """accepted=false => no taker and no price; fulfilled => accepted."""
        if not self.accepted and (self.has_taker or self.accepted_price != 0):
            return False
        if self.fulfilled and not self.accepted:
            return False
        return True


@dataclass(frozen=True)
class OrderCreatedEvent:
    order_id: OrderId
    maker: str
    amount: int
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class OrderAcceptedEvent:
    order_id: OrderId
    taker: str
    accepted_price: int
    block_number: int
    log_index: int = 0


def event_sort_key(event: OrderCreatedEvent | OrderAcceptedEvent) -> tuple[int, int]:
    return (event.block_number, event.log_index)
