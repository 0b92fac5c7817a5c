"""Pending-payment sweep: re-settle orders we won but have not paid."""

import logging
from collections.abc import Awaitable, Callable

from resolver.context import ResolverContext
from resolver.models.common import same_address
from resolver.models.order import Order
from resolver.models.settlement import SettlementResult

logger = logging.getLogger(__name__)


class PendingPaymentSweep:
    """Explicit reconciliation pass over processed orders.

    Orders we hold as taker, still unfulfilled and without a recorded
    payout, get one new settlement attempt per sweep. Orders that were paid
    but never marked fulfilled are only reported: re-paying them needs an
    operator. Orders found fulfilled or held by another resolver are closed
    in the registry and not read again.
    """

    def __init__(
        self,
        context: ResolverContext,
        read_order: Callable[[str], Awaitable[Order]],
        settle: Callable[[str], Awaitable[SettlementResult]],
        max_per_sweep: int = 1,
    ):
        self.context = context
        self.read_order = read_order
        self.settle = settle
        self.max_per_sweep = max_per_sweep
        self._sweeping = False
        self.needs_attention: set[str] = set()

    async def sweep(self) -> list[SettlementResult]:
        if self._sweeping:
            return []
        self._sweeping = True
        try:
            return await self._sweep()
        finally:
            self._sweeping = False

    async def _sweep(self) -> list[SettlementResult]:
        logger.debug("Checking for pending payment processing...")
        results: list[SettlementResult] = []
        records = self.context.settlements
        registry = self.context.registry
        for order_id in registry.open_ids():
            if len(results) >= self.max_per_sweep:
                break
            if records.is_in_flight(order_id):
                continue
            try:
                order = await self.read_order(order_id)
            except Exception as e:
                logger.debug("Could not check order %s: %s", order_id, e)
                continue

            if order.fulfilled:
                self.needs_attention.discard(order_id)
                registry.mark_closed(order_id)
                continue
            if not order.accepted:
                continue
            if not same_address(order.taker, self.context.resolver_address):
                registry.mark_closed(order_id)
                continue

            payout_id = records.payout_for(order_id)
            if payout_id:
                if order_id not in self.needs_attention:
                    logger.warning(
                        "Order %s paid (payout %s) but not fulfilled; operator action needed",
                        order_id, payout_id,
                    )
                self.needs_attention.add(order_id)
                continue

            logger.info("Found accepted order %s pending payment processing", order_id)
            results.append(await self.settle(order_id))
        return results
