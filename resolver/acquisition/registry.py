"""In-memory processing record: unseen -> processing -> processed."""

import logging

from resolver.models.common import OrderId, normalize_order_id
from resolver.models.order import ProcessingState

logger = logging.getLogger(__name__)


class ProcessingRegistry:
    """Tracks which order ids are being or have been acquired.

    `try_begin` does its membership check and insert without awaiting, so
    under asyncio two notifications for the same id cannot both pass it.
    The set is lost on restart; the contract's first-acceptance-wins rule
    is what prevents a second acceptance from landing.
    """

    def __init__(self) -> None:
        self._processing: set[OrderId] = set()
        self._processed: set[OrderId] = set()
        # processed ids this resolver will never settle: lost or already done
        self._closed: set[OrderId] = set()

    def state_of(self, order_id: str) -> ProcessingState:
        oid = normalize_order_id(order_id)
        if oid in self._processed:
            return ProcessingState.PROCESSED
        if oid in self._processing:
            return ProcessingState.PROCESSING
        return ProcessingState.UNSEEN

    def try_begin(self, order_id: str) -> bool:
        """Mark an unseen id as processing. False if already claimed."""
        oid = normalize_order_id(order_id)
        if oid in self._processed or oid in self._processing:
            return False
        self._processing.add(oid)
        return True

    def mark_processed(self, order_id: str) -> None:
        oid = normalize_order_id(order_id)
        self._processing.discard(oid)
        self._processed.add(oid)

    def mark_closed(self, order_id: str) -> None:
        """Mark processed with nothing left to settle (lost to another resolver or fulfilled)."""
        oid = normalize_order_id(order_id)
        self.mark_processed(oid)
        self._closed.add(oid)

    def is_closed(self, order_id: str) -> bool:
        return normalize_order_id(order_id) in self._closed

    def release(self, order_id: str) -> None:
        """processing -> unseen, leaving the id eligible for a retry."""
        oid = normalize_order_id(order_id)
        if oid in self._processed:
            return
        self._processing.discard(oid)

    def processed_ids(self) -> list[OrderId]:
        return sorted(self._processed)

    def open_ids(self) -> list[OrderId]:
        """Processed ids that may still need a settlement."""
        return sorted(self._processed - self._closed)

    @property
    def processing_count(self) -> int:
        return len(self._processing)

    @property
    def processed_count(self) -> int:
        return len(self._processed)
