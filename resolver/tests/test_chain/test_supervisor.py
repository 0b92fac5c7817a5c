"""Tests for the resilience supervisor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import no_sleep
from resolver.chain.errors import ErrorKind
from resolver.chain.supervisor import ResilienceSupervisor
from resolver.config.schema import ObservationMode, ObserverConfig
from resolver.context import ResolverContext

STALE = RuntimeError("filter not found")


@pytest.fixture
def sub_context(context) -> ResolverContext:
    context.health.mode = ObservationMode.SUBSCRIPTION
    return context


@pytest.fixture
def supervisor(sub_context, ledger):
    sup = ResilienceSupervisor(sub_context, ObserverConfig(), ledger, sleep=no_sleep)
    sup.set_listener_hooks(recreate=AsyncMock(), teardown=AsyncMock())
    return sup


class TestWatermark:
    def test_never_decreases(self, supervisor):
        assert supervisor.advance_watermark(150) == 150
        assert supervisor.advance_watermark(120) == 150
        assert supervisor.health.last_seen_block == 150


class TestStaleSubscription:
    @pytest.mark.asyncio
    async def test_recreates_below_threshold(self, supervisor):
        await supervisor.handle_stale_subscription(STALE)
        assert supervisor.mode is ObservationMode.SUBSCRIPTION
        assert supervisor.health.stale_subscription_errors == 1
        supervisor._recreate_hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_three_errors_switch_to_polling_permanently(self, supervisor):
        for _ in range(3):
            await supervisor.handle_stale_subscription(STALE)
        assert supervisor.mode is ObservationMode.POLLING
        assert supervisor.health.fell_back_to_polling
        assert supervisor.health.mode_switches == 1
        supervisor._teardown_hook.assert_awaited_once()

        await supervisor.handle_stale_subscription(STALE)
        assert supervisor.mode is ObservationMode.POLLING
        assert supervisor.health.mode_switches == 1
        assert supervisor.health.stale_subscription_errors == 3
        assert supervisor._recreate_hook.await_count == 2

    @pytest.mark.asyncio
    async def test_noop_in_polling_mode(self, context, ledger):
        sup = ResilienceSupervisor(context, ObserverConfig(), ledger, sleep=no_sleep)
        await sup.handle_stale_subscription(STALE)
        assert context.health.stale_subscription_errors == 0

    @pytest.mark.asyncio
    async def test_operator_can_reenable_subscription(self, supervisor):
        for _ in range(3):
            await supervisor.handle_stale_subscription(STALE)
        assert supervisor.request_subscription_mode()
        assert supervisor.mode is ObservationMode.SUBSCRIPTION
        assert supervisor.health.stale_subscription_errors == 0
        assert not supervisor.request_subscription_mode()


class TestHandleError:
    @pytest.mark.asyncio
    async def test_timeout_starts_sweep_in_background(self, supervisor):
        sweep = AsyncMock()
        supervisor.set_sweep_hook(sweep)
        kind = await supervisor.handle_error(asyncio.TimeoutError(), "poll")
        assert kind is ErrorKind.TIMEOUT
        sweep.assert_not_awaited()
        await asyncio.sleep(0)
        sweep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_does_not_wait_for_settlement(self, supervisor):
        release = asyncio.Event()
        started = []

        async def slow_sweep():
            started.append(True)
            await release.wait()

        supervisor.set_sweep_hook(slow_sweep)
        await supervisor.handle_error(TimeoutError(), "poll")
        await asyncio.sleep(0)
        assert started == [True]
        assert supervisor.pending_actions == 1

        # a second timeout while the first sweep is still settling
        await supervisor.handle_error(TimeoutError(), "poll")
        await asyncio.sleep(0)
        assert started == [True]

        release.set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert supervisor.pending_actions == 0

    @pytest.mark.asyncio
    async def test_sweep_failure_is_contained(self, supervisor):
        supervisor.set_sweep_hook(AsyncMock(side_effect=RuntimeError("boom")))
        kind = await supervisor.handle_error(TimeoutError(), "poll")
        assert kind is ErrorKind.TIMEOUT
        for _ in range(3):
            await asyncio.sleep(0)
        assert supervisor.pending_actions == 0

    @pytest.mark.asyncio
    async def test_close_cancels_running_sweep(self, supervisor):
        supervisor.set_sweep_hook(asyncio.Event().wait)
        await supervisor.handle_error(TimeoutError(), "poll")
        await supervisor.close()
        assert supervisor.pending_actions == 0

    @pytest.mark.asyncio
    async def test_connection_reconnects_and_recreates(self, supervisor, ledger):
        kind = await supervisor.handle_error(ConnectionResetError("reset"), "poll")
        assert kind is ErrorKind.CONNECTION
        assert ledger.reconnects == 1
        assert supervisor.health.reconnects == 1
        supervisor._recreate_hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_only_classified(self, supervisor, ledger):
        kind = await supervisor.handle_error(ValueError("bad"), "poll")
        assert kind is ErrorKind.UNKNOWN
        assert ledger.reconnects == 0
        supervisor._recreate_hook.assert_not_awaited()


class TestRecovery:
    @pytest.mark.asyncio
    async def test_failed_reconnect_is_rescheduled(self, supervisor, ledger):
        ledger.errors["reconnect"] = [ConnectionError("down")]
        assert not await supervisor.reconnect_provider()
        assert supervisor.pending_actions == 1
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert ledger.reconnects == 1
        await supervisor.close()

    @pytest.mark.asyncio
    async def test_failed_recreate_is_rescheduled(self, supervisor):
        supervisor._recreate_hook.side_effect = [RuntimeError("rpc hiccup"), None]
        assert not await supervisor.recreate_listeners()
        assert supervisor.pending_actions == 1
        await supervisor.close()
        assert supervisor.pending_actions == 0

    @pytest.mark.asyncio
    async def test_recreate_skipped_in_polling(self, context, ledger):
        sup = ResilienceSupervisor(context, ObserverConfig(), ledger, sleep=no_sleep)
        assert not await sup.recreate_listeners()
