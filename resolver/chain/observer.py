"""Chain observer: delivers OrderCreated events by polling or live filters."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from resolver.chain.errors import ErrorKind, classify_error, is_stale_subscription
from resolver.chain.ledger import EventFilters, LedgerClient
from resolver.chain.supervisor import ResilienceSupervisor
from resolver.config.schema import ObservationMode, ObserverConfig
from resolver.context import ResolverContext
from resolver.models.order import Order, OrderAcceptedEvent, OrderCreatedEvent, event_sort_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
OrderHandler = Callable[[OrderCreatedEvent], Awaitable[object]]

MAX_CATCH_UP_CYCLES = 50


class ChainObserver:
    """Watches the ledger for new and accepted orders.

    Polling (default) scans block ranges behind a monotonic watermark.
    Subscription mode polls provider-side filters, and the supervisor
    falls back to polling when those filters keep going stale.
    """

    def __init__(
        self,
        context: ResolverContext,
        config: ObserverConfig,
        ledger: LedgerClient,
        supervisor: ResilienceSupervisor,
        on_order_created: OrderHandler | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.config = config
        self.ledger = ledger
        self.supervisor = supervisor
        self._on_order_created = on_order_created
        self._sleep = sleep
        self._filters: EventFilters | None = None
        self._running = False
        supervisor.set_listener_hooks(
            recreate=self.recreate_listeners,
            teardown=self.teardown_listeners,
        )

    def set_order_handler(self, handler: OrderHandler) -> None:
        self._on_order_created = handler

    @property
    def watermark(self) -> int:
        return self.context.health.last_seen_block

    @property
    def has_listeners(self) -> bool:
        return self._filters is not None

    # --- Recovery-wrapped reads ---

    async def execute_with_recovery(self, call: Callable[[], Awaitable[T]], operation: str) -> T:
        """Run a ledger call, retrying stale-subscription failures.

        Between attempts the supervisor runs its recovery action. After
        `recovery_retries` retries, or on any other error, the error is
        raised to the caller.
        """
        attempt = 0
        while True:
            try:
                return await call()
            except Exception as e:
                attempt += 1
                if is_stale_subscription(e) and attempt <= self.config.recovery_retries:
                    logger.warning(
                        "Stale filter error in %s (attempt %d/%d), recovering...",
                        operation, attempt, self.config.recovery_retries + 1,
                    )
                    await self.supervisor.handle_stale_subscription(e)
                    await self._sleep(self.config.recovery_retry_delay_seconds)
                    continue
                logger.error("%s failed after %d attempt(s): %s", operation, attempt, e)
                raise

    async def read_order(self, order_id: str) -> Order:
        return await self.execute_with_recovery(
            lambda: self.ledger.get_order(order_id),
            f"Reading order {order_id}",
        )

    # --- Lifecycle ---

    async def start(self) -> int:
        """Anchor the watermark at the current height and mark running."""
        head = await self.ledger.block_number()
        self.supervisor.advance_watermark(head)
        self._running = True
        logger.info("Observing from block %d (%s mode)", self.watermark, self.context.health.mode)
        return head

    async def run(self) -> None:
        """Run the active strategy until stopped, following mode changes."""
        self._running = True
        while self._running:
            if self.context.health.mode is ObservationMode.SUBSCRIPTION:
                await self.run_subscription()
            else:
                await self.run_polling()

    async def stop(self) -> None:
        self._running = False
        await self.teardown_listeners()

    # --- Polling strategy ---

    async def poll_once(self) -> int:
        """Scan the next block range. Returns the number of creation events."""
        head = await self.ledger.block_number()
        start = self.watermark
        if head <= start:
            logger.debug("Already up to date. Current: %d, last: %d", head, start)
            return 0

        from_block = start + 1
        to_block = min(head, start + self.config.max_block_span)
        logger.debug("Polling blocks %d to %d for events", from_block, to_block)

        created = sorted(
            await self.ledger.get_created_events(from_block, to_block), key=event_sort_key
        )
        accepted = sorted(
            await self.ledger.get_accepted_events(from_block, to_block), key=event_sort_key
        )

        for event in created:
            logger.info("Found OrderCreated %s in block %d", event.order_id, event.block_number)
            await self._deliver(event)
        for event in accepted:
            self._log_accepted(event)

        self.supervisor.advance_watermark(to_block)
        if created or accepted:
            logger.info(
                "Processed %d OrderCreated and %d OrderAccepted events (blocks %d-%d)",
                len(created), len(accepted), from_block, to_block,
            )
        return len(created)

    async def run_polling(self) -> None:
        logger.info("Polling for events every %.0fs", self.config.poll_interval_seconds)
        while self._running and self.context.health.mode is ObservationMode.POLLING:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                kind = await self.supervisor.handle_error(e, "event polling")
                if kind is ErrorKind.UNKNOWN:
                    raise
            await self._sleep(self.config.poll_interval_seconds)

    async def catch_up(self) -> int:
        """Poll repeatedly until the watermark reaches the chain head."""
        delivered = 0
        for _ in range(MAX_CATCH_UP_CYCLES):
            before = self.watermark
            delivered += await self.poll_once()
            if self.watermark == before:
                break
        return delivered

    # --- Subscription strategy ---

    async def setup_listeners(self) -> None:
        self._filters = await self.ledger.create_event_filters()
        logger.info("Event filters installed")

    async def teardown_listeners(self) -> None:
        filters, self._filters = self._filters, None
        if filters is not None:
            await self.ledger.uninstall_filters(filters)

    async def recreate_listeners(self) -> None:
        """Replace the filters, then backfill blocks they may have missed."""
        await self.teardown_listeners()
        await self.setup_listeners()
        await self.catch_up()

    async def subscribe_once(self) -> int:
        if self._filters is None:
            await self.setup_listeners()
        created, accepted = await self.ledger.poll_filters(self._filters)
        for event in sorted(created, key=event_sort_key):
            self.supervisor.advance_watermark(event.block_number)
            await self._deliver(event)
        for event in sorted(accepted, key=event_sort_key):
            self.supervisor.advance_watermark(event.block_number)
            self._log_accepted(event)
        return len(created)

    async def run_subscription(self) -> None:
        logger.info("Using filter-based event listening")
        while self._running and self.context.health.mode is ObservationMode.SUBSCRIPTION:
            try:
                await self.subscribe_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                kind = await self.supervisor.handle_error(e, "filter poll")
                if kind is ErrorKind.UNKNOWN:
                    raise
            await self._sleep(self.config.filter_poll_interval_seconds)
        await self.teardown_listeners()

    async def health_check_once(self) -> bool:
        """Force listener recreation when the watermark lags too far.

        Returns True if recreation was triggered.
        """
        if self.context.health.mode is not ObservationMode.SUBSCRIPTION:
            return False
        try:
            head = await self.ledger.block_number()
        except Exception as e:
            kind = classify_error(e)
            logger.error("Filter health check failed: %s", e)
            if kind in (ErrorKind.STALE_SUBSCRIPTION, ErrorKind.CONNECTION):
                return await self.supervisor.recreate_listeners()
            if kind is ErrorKind.UNKNOWN:
                raise
            return False

        gap = head - self.watermark
        if gap > self.config.staleness_threshold_blocks:
            logger.warning("Potential missed events, blocks behind: %d", gap)
            return await self.supervisor.recreate_listeners()
        logger.debug("Filter health check passed. Current: %d, last: %d", head, self.watermark)
        return False

    async def run_health_check(self) -> None:
        while self._running:
            await self._sleep(self.config.health_check_interval_seconds)
            if not self._running:
                break
            await self.health_check_once()

    # --- Delivery ---

    async def _deliver(self, event: OrderCreatedEvent) -> None:
        if self._on_order_created is None:
            logger.warning("No order handler registered, dropping %s", event.order_id)
            return
        await self._on_order_created(event)

    @staticmethod
    def _log_accepted(event: OrderAcceptedEvent) -> None:
        logger.info(
            "Order %s accepted by %s at price %d",
            event.order_id, event.taker, event.accepted_price,
        )
