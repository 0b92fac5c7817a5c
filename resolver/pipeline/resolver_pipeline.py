"""Resolver pipeline: wires observer -> acquisition -> settlement for one context."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from resolver.acquisition.engine import AcquisitionEngine
from resolver.auction.participant import AuctionParticipant
from resolver.backend.coordinator import CoordinatorClient
from resolver.chain.ledger import LedgerClient
from resolver.chain.observer import ChainObserver
from resolver.chain.supervisor import ResilienceSupervisor
from resolver.context import ResolverContext
from resolver.models.settlement import SettlementResult
from resolver.payments.razorpayx import RazorpayXClient
from resolver.settlement.engine import SettlementEngine
from resolver.settlement.reconciler import PendingPaymentSweep

logger = logging.getLogger(__name__)


class ResolverPipeline:
    """Owns every engine of one resolver and the tasks they spawn.

    Settlement is reachable from three places: the acquisition hand-off,
    the backend's acceptance callback, and the pending-payment sweep.
    All of them go through `SettlementEngine.settle`, which refuses to
    start a second attempt for an order already in flight or paid.
    """

    def __init__(
        self,
        context: ResolverContext,
        ledger: LedgerClient,
        coordinator: CoordinatorClient,
        payments: RazorpayXClient,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.ledger = ledger
        self.coordinator = coordinator
        self.payments = payments
        self._sleep = sleep
        self._settlements: set[asyncio.Task] = set()
        config = context.config

        self.supervisor = ResilienceSupervisor(context, config.observer, ledger, sleep=sleep)
        self.observer = ChainObserver(context, config.observer, ledger, self.supervisor, sleep=sleep)
        self.settlement = SettlementEngine(
            context, self.observer.read_order, payments, coordinator
        )
        self.acquisition = AcquisitionEngine(
            context, coordinator, self.observer.read_order,
            on_accepted=self.settlement.settle, rng=rng,
        )
        self.participant = AuctionParticipant(
            context, config.auction, coordinator, self.acquisition.accept_at_price, rng=rng
        )
        self.sweeper = PendingPaymentSweep(context, self.observer.read_order, self.settlement.settle)

        self.observer.set_order_handler(self.acquisition.on_order_created)
        self.supervisor.set_sweep_hook(self.sweep)

    async def sweep(self) -> list[SettlementResult]:
        return await self.sweeper.sweep()

    def start_sweep(self) -> asyncio.Task:
        """Sweep pending payments in the background."""
        return self._track(asyncio.get_running_loop().create_task(self.sweep()))

    def schedule_settlement(self, order_id: str) -> asyncio.Task:
        """Settle after the configured delay, without blocking the caller."""
        delay = self.context.config.callback.settlement_delay_seconds

        async def _settle_later() -> SettlementResult | None:
            await self._sleep(delay)
            try:
                return await self.settlement.settle(order_id)
            except Exception:
                logger.exception("Scheduled settlement failed for order %s", order_id)
                return None

        return self._track(asyncio.get_running_loop().create_task(_settle_later()))

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._settlements.add(task)
        task.add_done_callback(self._settlements.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding settlement work."""
        await self.acquisition.drain()
        if self._settlements:
            await asyncio.gather(*list(self._settlements), return_exceptions=True)

    async def close(self) -> None:
        await self.observer.stop()
        await self.participant.close()
        await self.acquisition.close()
        for task in list(self._settlements):
            task.cancel()
        if self._settlements:
            await asyncio.gather(*list(self._settlements), return_exceptions=True)
        await self.supervisor.close()
