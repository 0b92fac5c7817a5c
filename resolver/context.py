"""Per-agent mutable state, owned by one ResolverContext per running bot."""

from dataclasses import dataclass, field

from resolver.acquisition.registry import ProcessingRegistry
from resolver.config.schema import ObservationMode, ResolverConfig
from resolver.models.auction import AuctionSession
from resolver.models.common import OrderId, normalize_order_id, utc_now_iso
from resolver.models.health import ConnectionHealth


class SettlementRecords:
    """Settlements in flight and payouts already obtained, keyed by order id."""

    def __init__(self) -> None:
        self._in_flight: set[OrderId] = set()
        self._payouts: dict[OrderId, str] = {}

    def try_begin(self, order_id: str) -> bool:
        oid = normalize_order_id(order_id)
        if oid in self._in_flight or oid in self._payouts:
            return False
        self._in_flight.add(oid)
        return True

    def finish(self, order_id: str) -> None:
        self._in_flight.discard(normalize_order_id(order_id))

    def record_payout(self, order_id: str, payout_id: str) -> None:
        self._payouts[normalize_order_id(order_id)] = payout_id

    def payout_for(self, order_id: str) -> str | None:
        return self._payouts.get(normalize_order_id(order_id))

    def is_in_flight(self, order_id: str) -> bool:
        return normalize_order_id(order_id) in self._in_flight


@dataclass
class ResolverContext:
    config: ResolverConfig
    resolver_address: str
    registry: ProcessingRegistry = field(default_factory=ProcessingRegistry)
    settlements: SettlementRecords = field(default_factory=SettlementRecords)
    auctions: dict[OrderId, AuctionSession] = field(default_factory=dict)
    health: ConnectionHealth | None = None
    started_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if self.health is None:
            self.health = ConnectionHealth(mode=ObservationMode(self.config.observer.mode))
