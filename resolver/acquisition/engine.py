"""Order acquisition: bid pricing and one acceptance attempt per order."""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal

from resolver.backend.coordinator import CoordinatorClient, CoordinatorError
from resolver.context import ResolverContext
from resolver.models.common import normalize_order_id, same_address
from resolver.models.order import Order, OrderCreatedEvent
from resolver.models.settlement import AcceptanceOutcome, AcceptResult
from resolver.reporting.formatters import format_inr_amount

logger = logging.getLogger(__name__)

MIN_DISCOUNT_FACTOR = 0.3
MAX_DISCOUNT_FACTOR = 0.7

_REJECTION_HINTS = {
    400: "Invalid price or parameters",
    403: "Resolver is not registered as a resolver",
    404: "Order does not exist",
}


def calculate_accepted_price(
    start_price: int, end_price: int, rng: random.Random | None = None
) -> int:
    """Pick a bid between end and start price.

    The discount below start is a random 30-70% of the price range, so
    competing resolvers rarely submit the identical price.
    """
    rng = rng or random.Random()
    high, low = max(start_price, end_price), min(start_price, end_price)
    factor = rng.uniform(MIN_DISCOUNT_FACTOR, MAX_DISCOUNT_FACTOR)
    discount = int(Decimal(high - low) * Decimal(repr(factor)))
    return max(low, min(high, high - discount))


class AcquisitionEngine:
    def __init__(
        self,
        context: ResolverContext,
        coordinator: CoordinatorClient,
        read_order: Callable[[str], Awaitable[Order]],
        on_accepted: Callable[[str], Awaitable[object]] | None = None,
        rng: random.Random | None = None,
    ):
        self.context = context
        self.coordinator = coordinator
        self.read_order = read_order
        self.on_accepted = on_accepted
        self.rng = rng or random.Random()
        self._handoffs: set[asyncio.Task] = set()

    @property
    def registry(self):
        return self.context.registry

    async def on_order_created(self, event: OrderCreatedEvent) -> AcceptResult:
        logger.info(
            "New order detected! ID: %s, maker: %s, amount: %s",
            event.order_id, event.maker, format_inr_amount(event.amount),
        )
        return await self.acquire(event.order_id)

    async def acquire(self, order_id: str) -> AcceptResult:
        """Bid on an order once. Repeated or concurrent calls are no-ops."""
        oid = normalize_order_id(order_id)
        if not self.registry.try_begin(oid):
            logger.info("Order %s already %s, skipping", oid, self.registry.state_of(oid))
            return AcceptResult(order_id=oid, outcome=AcceptanceOutcome.SKIPPED)

        started = time.monotonic()
        try:
            order = await self.read_order(oid)
        except Exception as e:
            logger.error("Could not read order %s, will retry on re-delivery: %s", oid, e)
            self.registry.release(oid)
            return AcceptResult(
                order_id=oid, outcome=AcceptanceOutcome.FAILED, error_message=str(e)
            )

        if order.accepted or order.fulfilled:
            logger.warning(
                "Order %s is already %s", oid, "fulfilled" if order.fulfilled else "accepted"
            )
            if order.fulfilled or not same_address(order.taker, self.context.resolver_address):
                self.registry.mark_closed(oid)
            else:
                self.registry.mark_processed(oid)
            return AcceptResult(order_id=oid, outcome=AcceptanceOutcome.SKIPPED)

        price = calculate_accepted_price(order.start_price, order.end_price, self.rng)
        logger.info(
            "Price calculation - start: %d, end: %d, accepted: %d",
            order.start_price, order.end_price, price,
        )
        result = await self._submit(oid, str(price), source="ledger event")
        logger.info(
            "Order %s processing completed in %.0fms (%s)",
            oid, (time.monotonic() - started) * 1000, result.outcome,
        )
        return result

    async def accept_at_price(self, order_id: str, price: str, source: str = "auction") -> AcceptResult:
        """Submit acceptance at a price decided elsewhere (Dutch auction)."""
        oid = normalize_order_id(order_id)
        if not self.registry.try_begin(oid):
            logger.info("Order %s already %s, not bidding", oid, self.registry.state_of(oid))
            return AcceptResult(order_id=oid, outcome=AcceptanceOutcome.SKIPPED)
        return await self._submit(oid, price, source=source)

    async def _submit(self, oid: str, price: str, source: str) -> AcceptResult:
        logger.info("Accepting order %s at price %s (%s)", oid, price, source)
        try:
            receipt = await self.coordinator.accept_order(
                oid, price, self.context.resolver_address
            )
        except CoordinatorError as e:
            if e.is_conflict:
                logger.warning("Order %s was already accepted by another resolver", oid)
                self.registry.mark_closed(oid)
                return AcceptResult(
                    order_id=oid, outcome=AcceptanceOutcome.CONFLICT,
                    accepted_price=price, status_code=409, error_message=str(e),
                )
            self.registry.release(oid)
            hint = _REJECTION_HINTS.get(e.status_code or 0, "")
            logger.error(
                "Failed to accept order %s (status=%s)%s: %s",
                oid, e.status_code, f" - {hint}" if hint else "", e.body or e,
            )
            rejected = e.status_code is not None and 400 <= e.status_code < 500
            return AcceptResult(
                order_id=oid,
                outcome=AcceptanceOutcome.REJECTED if rejected else AcceptanceOutcome.FAILED,
                accepted_price=price, status_code=e.status_code, error_message=str(e),
            )
        except Exception as e:
            logger.exception("Unexpected error accepting order %s", oid)
            self.registry.release(oid)
            return AcceptResult(
                order_id=oid, outcome=AcceptanceOutcome.FAILED,
                accepted_price=price, error_message=str(e),
            )

        self.registry.mark_processed(oid)
        logger.info(
            "Order %s accepted: tx=%s block=%s gas=%s",
            oid, receipt.transaction_hash, receipt.block_number, receipt.gas_used,
        )
        self._hand_off(oid)
        return AcceptResult(
            order_id=oid, outcome=AcceptanceOutcome.ACCEPTED,
            accepted_price=price, receipt=receipt, status_code=200,
        )

    def _hand_off(self, oid: str) -> None:
        if self.on_accepted is None:
            return
        task = asyncio.get_running_loop().create_task(self._run_handoff(oid))
        self._handoffs.add(task)
        task.add_done_callback(self._handoffs.discard)

    async def _run_handoff(self, oid: str) -> None:
        try:
            await self.on_accepted(oid)
        except Exception:
            logger.exception("Settlement hand-off failed for order %s", oid)

    async def drain(self) -> None:
        """Wait for outstanding settlement hand-offs."""
        if self._handoffs:
            await asyncio.gather(*list(self._handoffs), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._handoffs):
            task.cancel()
        await self.drain()
