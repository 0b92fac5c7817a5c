"""Shared test fixtures."""

import random
from pathlib import Path

import pytest
import yaml

from resolver.config.schema import ResolverConfig
from resolver.context import ResolverContext
from resolver.models.common import ZERO_ADDRESS
from resolver.models.order import Order, OrderAcceptedEvent, OrderCreatedEvent

RESOLVER = "0x1111111111111111111111111111111111111111"
OTHER_RESOLVER = "0x2222222222222222222222222222222222222222"
MAKER = "0x3333333333333333333333333333333333333333"
ORDER_ID = "0x" + "ab" * 32
ONE_RUPEE = 10**18


def make_order(
    order_id: str = ORDER_ID,
    accepted: bool = False,
    fulfilled: bool = False,
    taker: str = ZERO_ADDRESS,
    amount: int = 250 * ONE_RUPEE,
    start_price: int = 1000,
    end_price: int = 900,
    accepted_price: int = 0,
) -> Order:
    return Order(
        order_id=order_id,
        maker=MAKER,
        taker=taker,
        recipient_upi="merchant@upi",
        amount=amount,
        start_price=start_price,
        end_price=end_price,
        accepted_price=accepted_price,
        start_time=1_700_000_000,
        accepted_time=0,
        accepted=accepted,
        fulfilled=fulfilled,
    )


def accepted_by_us(order_id: str = ORDER_ID, **kwargs) -> Order:
    return make_order(order_id, accepted=True, taker=RESOLVER, accepted_price=950, **kwargs)


class FakeFilter:
    def __init__(self, filter_id: str):
        self.filter_id = filter_id
        self.entries: list = []

    async def get_new_entries(self):
        entries, self.entries = self.entries, []
        return entries


class FakeLedger:
    """In-memory stand-in for LedgerClient.

    `errors` maps a method name to a list of exceptions raised, one per
    call, before the method starts answering normally.
    """

    def __init__(self, head: int = 0):
        self.head = head
        self.orders: dict[str, Order] = {}
        self.created: list[OrderCreatedEvent] = []
        self.accepted: list[OrderAcceptedEvent] = []
        self.errors: dict[str, list[Exception]] = {}
        self.queried_ranges: list[tuple[int, int]] = []
        self.filter_batches: list[tuple[list, list]] = []
        self.filters_created = 0
        self.filters_uninstalled = 0
        self.reconnects = 0
        self.order_reads = 0
        self.connected = False
        self.closed = False

    def _maybe_raise(self, name: str) -> None:
        pending = self.errors.get(name)
        if pending:
            raise pending.pop(0)

    def connect(self) -> None:
        self.connected = True

    async def reconnect(self) -> int:
        self._maybe_raise("reconnect")
        self.reconnects += 1
        return self.head

    async def block_number(self) -> int:
        self._maybe_raise("block_number")
        return self.head

    async def chain_id(self) -> int:
        return 31337

    async def balance(self, address: str) -> int:
        return 10 * ONE_RUPEE

    async def get_order(self, order_id: str) -> Order:
        self._maybe_raise("get_order")
        self.order_reads += 1
        return self.orders[order_id]

    async def get_created_events(self, from_block: int, to_block: int):
        self._maybe_raise("get_created_events")
        self.queried_ranges.append((from_block, to_block))
        return [e for e in self.created if from_block <= e.block_number <= to_block]

    async def get_accepted_events(self, from_block: int, to_block: int):
        self._maybe_raise("get_accepted_events")
        return [e for e in self.accepted if from_block <= e.block_number <= to_block]

    async def create_event_filters(self):
        self._maybe_raise("create_event_filters")
        self.filters_created += 1
        return (FakeFilter(f"c{self.filters_created}"), FakeFilter(f"a{self.filters_created}"))

    async def poll_filters(self, filters):
        self._maybe_raise("poll_filters")
        if self.filter_batches:
            return self.filter_batches.pop(0)
        return [], []

    async def uninstall_filters(self, filters) -> None:
        self.filters_uninstalled += 1

    async def close(self) -> None:
        self.closed = True


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def default_config() -> ResolverConfig:
    return ResolverConfig()


@pytest.fixture
def context(default_config) -> ResolverContext:
    return ResolverContext(config=default_config, resolver_address=RESOLVER)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(head=100)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "chain": {"rpc_url": "http://rpc.test:8545", "contract_address": MAKER},
        "observer": {"mode": "subscription", "max_block_span": 50},
        "auction": {"participation_probability": 1.0},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path
