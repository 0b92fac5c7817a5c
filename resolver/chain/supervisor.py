"""Resilience supervisor: reacts to classified infra faults without exiting."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from resolver.chain.errors import ErrorKind, classify_error, is_stale_subscription
from resolver.chain.ledger import LedgerClient
from resolver.config.schema import ObservationMode, ObserverConfig
from resolver.context import ResolverContext

logger = logging.getLogger(__name__)

AsyncHook = Callable[[], Awaitable[None]]

LISTENER_RETRY_SECONDS = 5.0


async def _noop() -> None:
    return None


class ResilienceSupervisor:
    """Owns the connection health state and every recovery action.

    Subscription -> Polling is a one-way fallback once the stale-subscription
    count reaches the configured threshold. Polling -> Subscription happens
    only through `request_subscription_mode`.
    """

    def __init__(
        self,
        context: ResolverContext,
        config: ObserverConfig,
        ledger: LedgerClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.config = config
        self.ledger = ledger
        self._sleep = sleep
        self._recreate_hook: AsyncHook = _noop
        self._teardown_hook: AsyncHook = _noop
        self._sweep_hook: AsyncHook | None = None
        self._recreating = False
        self._reconnecting = False
        self._background: set[asyncio.Task] = set()
        self._sweep_task: asyncio.Task | None = None

    @property
    def health(self):
        return self.context.health

    @property
    def mode(self) -> ObservationMode:
        return self.health.mode

    def set_listener_hooks(self, recreate: AsyncHook, teardown: AsyncHook) -> None:
        self._recreate_hook = recreate
        self._teardown_hook = teardown

    def set_sweep_hook(self, sweep: AsyncHook | None) -> None:
        self._sweep_hook = sweep

    # --- Watermark ---

    def advance_watermark(self, block: int) -> int:
        """Raise the last-seen block; it never moves backwards."""
        if block > self.health.last_seen_block:
            self.health.last_seen_block = block
        return self.health.last_seen_block

    # --- Dispatch ---

    async def handle_error(self, exc: BaseException, operation: str = "") -> ErrorKind:
        kind = classify_error(exc)
        where = f" during {operation}" if operation else ""
        if kind is ErrorKind.TIMEOUT:
            logger.warning("RPC timeout%s, continuing with next cycle: %s", where, exc)
            await self.on_timeout()
        elif kind is ErrorKind.STALE_SUBSCRIPTION:
            logger.warning("Stale subscription%s: %s", where, exc)
            await self.handle_stale_subscription(exc)
        elif kind is ErrorKind.CONNECTION:
            logger.warning("Network failure%s, rebuilding provider: %s", where, exc)
            await self.reconnect_provider()
        else:
            logger.error("Unclassified error%s: %r", where, exc)
        return kind

    async def on_timeout(self) -> None:
        """Start a pending-payment sweep in the background, one at a time."""
        if self._sweep_hook is None:
            return
        if self._sweep_task is not None and not self._sweep_task.done():
            logger.debug("Pending-payment sweep already running")
            return
        self._sweep_task = self._spawn(self._run_sweep(self._sweep_hook))

    async def _run_sweep(self, sweep: AsyncHook) -> None:
        try:
            await sweep()
        except Exception as e:
            logger.warning("Pending-payment sweep after timeout failed: %s", e)

    # --- Stale subscriptions ---

    async def handle_stale_subscription(self, exc: BaseException | None = None) -> None:
        if self.mode is ObservationMode.POLLING:
            logger.info("Polling mode active, stale filter does not affect observation")
            return
        if self._recreating:
            logger.info("Listener recreation already in progress, skipping")
            return

        self._recreating = True
        try:
            self.health.stale_subscription_errors += 1
            count = self.health.stale_subscription_errors
            if count >= self.config.fallback_error_threshold:
                logger.warning(
                    "Too many stale-subscription errors (%d), switching to polling mode",
                    count,
                )
                await self.fall_back_to_polling()
                return
            await self._sleep(self.config.recreate_grace_seconds)
            await self.recreate_listeners()
        finally:
            self._recreating = False

    async def fall_back_to_polling(self) -> None:
        if self.mode is ObservationMode.POLLING:
            return
        self.health.mode = ObservationMode.POLLING
        self.health.fell_back_to_polling = True
        self.health.mode_switches += 1
        try:
            await self._teardown_hook()
        except Exception as e:
            logger.warning("Error while removing listeners (continuing): %s", e)
        logger.info("Switched to polling mode for the rest of this process")

    def request_subscription_mode(self) -> bool:
        """Operator action: re-enable subscription mode. False if already on."""
        if self.mode is ObservationMode.SUBSCRIPTION:
            return False
        self.health.mode = ObservationMode.SUBSCRIPTION
        self.health.stale_subscription_errors = 0
        self.health.fell_back_to_polling = False
        self.health.mode_switches += 1
        logger.info("Subscription mode re-enabled by operator")
        return True

    # --- Listener / provider recovery ---

    async def recreate_listeners(self) -> bool:
        if self.mode is not ObservationMode.SUBSCRIPTION:
            return False
        logger.info("Recreating event listeners...")
        try:
            await self._recreate_hook()
        except Exception as e:
            logger.error("Failed to recreate event listeners: %s", e)
            if is_stale_subscription(e):
                self._schedule(self.reconnect_provider, LISTENER_RETRY_SECONDS)
            else:
                self._schedule(self.recreate_listeners, LISTENER_RETRY_SECONDS)
            return False
        self.health.recreations += 1
        logger.info("Event listeners recreated")
        return True

    async def reconnect_provider(self) -> bool:
        if self._reconnecting:
            return False
        self._reconnecting = True
        try:
            logger.info("Reconnecting to RPC provider...")
            head = await self.ledger.reconnect()
            self.health.reconnects += 1
            logger.info("Provider reconnected at block %d", head)
        except Exception as e:
            logger.error("Provider reconnection failed: %s", e)
            self._schedule(self.reconnect_provider, self.config.reconnect_retry_seconds)
            return False
        finally:
            self._reconnecting = False
        await self.recreate_listeners()
        return True

    def _schedule(self, action: Callable[[], Awaitable[bool]], delay: float) -> None:
        async def _later() -> None:
            await self._sleep(delay)
            await action()

        self._spawn(_later())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending_actions(self) -> int:
        return len(self._background)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
