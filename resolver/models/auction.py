"""Dutch auction session model."""

import asyncio
from dataclasses import dataclass, field

from resolver.models.common import OrderId


@dataclass
class AuctionSession:
    order_id: OrderId
    start_price: float
    end_price: float
    duration_ms: int
    participating: bool
    delay_ms: float
    started_at: float  # loop.time() at auction-start notification
    last_logged_progress: float = 0.0
    fired: bool = False
    timer: asyncio.Task | None = field(default=None, repr=False)

    @property
    def fire_at(self) -> float:
        return self.started_at + self.delay_ms / 1000
