"""Connection health and operational status models."""

from dataclasses import dataclass

from resolver.config.schema import ObservationMode


@dataclass
class ConnectionHealth:
    mode: ObservationMode
    last_seen_block: int = 0
    stale_subscription_errors: int = 0
    fell_back_to_polling: bool = False
    mode_switches: int = 0
    reconnects: int = 0
    recreations: int = 0


@dataclass(frozen=True)
class HealthStatus:
    status: str
    resolver: str
    timestamp: str
    mode: str
    watermark: int
    processing: int
    processed: int
    active_auctions: int
