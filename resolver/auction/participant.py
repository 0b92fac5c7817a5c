"""Dutch auction participation driven by real-time channel notifications."""

import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from typing import Any

from resolver.backend.coordinator import CoordinatorClient
from resolver.config.schema import AuctionConfig
from resolver.context import ResolverContext
from resolver.models.auction import AuctionSession
from resolver.models.common import normalize_order_id
from resolver.models.settlement import AcceptanceOutcome, AcceptResult

logger = logging.getLogger(__name__)

AcceptAtPrice = Callable[[str, str, str], Awaitable[AcceptResult]]


def format_price(price: float) -> str:
    price = float(price)
    return str(int(price)) if price.is_integer() else repr(price)


class AuctionParticipant:
    """Decides whether and when to bid into each announced auction.

    Each session gets at most one scheduled acceptance attempt, and every
    session is removed exactly once: by the attempt itself, or by an
    auction-accepted / auction-ended notification, or on shutdown.
    """

    def __init__(
        self,
        context: ResolverContext,
        config: AuctionConfig,
        coordinator: CoordinatorClient,
        accept_at_price: AcceptAtPrice,
        rng: random.Random | None = None,
    ):
        self.context = context
        self.config = config
        self.coordinator = coordinator
        self.accept_at_price = accept_at_price
        self.rng = rng or random.Random()

    @property
    def sessions(self) -> dict[str, AuctionSession]:
        return self.context.auctions

    def draw_delay_ms(self) -> float:
        return self.rng.uniform(self.config.min_delay_ms, self.config.max_delay_ms)

    def on_auction_started(self, data: dict[str, Any]) -> AuctionSession | None:
        order_id = data.get("orderId")
        if not order_id:
            logger.warning("auctionStarted without orderId: %s", data)
            return None
        oid = normalize_order_id(order_id)
        if oid in self.sessions:
            logger.info("Already tracking auction for order %s", oid)
            return self.sessions[oid]

        if self.rng.random() >= self.config.participation_probability:
            logger.info("Skipping auction for order %s (random decision)", oid)
            return None

        loop = asyncio.get_running_loop()
        delay_ms = self.draw_delay_ms()
        session = AuctionSession(
            order_id=oid,
            start_price=float(data.get("startPrice") or 0),
            end_price=float(data.get("endPrice") or 0),
            duration_ms=int(data.get("duration") or 0),
            participating=True,
            delay_ms=delay_ms,
            started_at=loop.time(),
        )
        logger.info(
            "Participating in Dutch auction for order %s: %s -> %s over %dms, bidding in %.0fms",
            oid, session.start_price, session.end_price, session.duration_ms, delay_ms,
        )
        session.timer = loop.create_task(self._fire_after(oid, delay_ms / 1000))
        self.sessions[oid] = session
        return session

    def on_price_update(self, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        if not order_id:
            return
        session = self.sessions.get(normalize_order_id(order_id))
        if session is None or not session.participating:
            return
        progress = float(data.get("progress") or 0)
        step = self.config.progress_log_step
        if math.floor(progress / step) != math.floor(session.last_logged_progress / step):
            logger.info(
                "Order %s price: %.2f (%.1f%%)",
                session.order_id, float(data.get("currentPrice") or 0), progress,
            )
            session.last_logged_progress = progress

    def on_auction_accepted(self, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        if order_id:
            logger.info("Dutch auction accepted for order %s", order_id)
            self.cleanup(order_id)

    def on_auction_ended(self, data: dict[str, Any]) -> None:
        order_id = data.get("orderId")
        if order_id:
            logger.info("Dutch auction ended for order %s: %s", order_id, data.get("reason"))
            self.cleanup(order_id)

    async def _fire_after(self, oid: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        await self.attempt_acceptance(oid)

    async def attempt_acceptance(self, order_id: str) -> AcceptResult | None:
        """Re-check the auction and accept at the backend's current price."""
        oid = normalize_order_id(order_id)
        try:
            session = self.sessions.get(oid)
            if session is None or not session.participating:
                logger.warning("Cannot accept auction for order %s - not participating", oid)
                return None
            session.fired = True

            status = await self.coordinator.auction_status(oid)
            if not status.active or status.current_price is None:
                logger.warning("Auction for order %s is no longer active", oid)
                return None

            price = format_price(status.current_price)
            logger.info("Attempting to accept order %s at price %s", oid, price)
            result = await self.accept_at_price(oid, price, "dutch auction")
            if result.outcome is AcceptanceOutcome.ACCEPTED:
                logger.info("Won Dutch auction for order %s at %s", oid, price)
            else:
                logger.warning("Dutch auction bid for order %s: %s", oid, result.outcome)
            return result
        except Exception as e:
            logger.error("Error attempting auction acceptance for order %s: %s", oid, e)
            return None
        finally:
            self.cleanup(oid)

    def cleanup(self, order_id: str) -> bool:
        """Drop the session and cancel its timer if it has not fired yet."""
        oid = normalize_order_id(order_id)
        session = self.sessions.pop(oid, None)
        if session is None:
            return False
        timer = session.timer
        if timer is not None and not session.fired and timer is not asyncio.current_task():
            timer.cancel()
        logger.debug("Cleaned up auction data for order %s", oid)
        return True

    async def close(self) -> None:
        timers = [s.timer for s in self.sessions.values() if s.timer is not None]
        for oid in list(self.sessions):
            self.cleanup(oid)
        for timer in timers:
            if not timer.done():
                timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
