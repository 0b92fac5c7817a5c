"""OrderProtocol contract access over an async JSON-RPC provider."""

import logging
from typing import Any

from web3 import AsyncWeb3

from resolver.chain.errors import LedgerError
from resolver.config.schema import ChainConfig
from resolver.models.common import normalize_order_id
from resolver.models.order import ORDER_FIELDS, Order, OrderAcceptedEvent, OrderCreatedEvent

logger = logging.getLogger(__name__)

_ORDER_COMPONENT_TYPES = {
    "maker": "address",
    "taker": "address",
    "recipientUpiAddress": "string",
    "amount": "uint256",
    "startPrice": "uint256",
    "acceptedPrice": "uint256",
    "endPrice": "uint256",
    "startTime": "uint256",
    "acceptedTime": "uint256",
    "accepted": "bool",
    "fullfilled": "bool",
}

# Subset of the OrderProtocol ABI the resolver reads.
ORDER_PROTOCOL_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "getOrder",
        "stateMutability": "view",
        "inputs": [{"name": "_orderId", "type": "bytes32", "internalType": "bytes32"}],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "internalType": "struct OrderProtocol.Order",
                "components": [
                    {"name": name, "type": _ORDER_COMPONENT_TYPES[name]}
                    for name in ORDER_FIELDS
                ],
            }
        ],
    },
    {
        "type": "event",
        "name": "OrderCreated",
        "anonymous": False,
        "inputs": [
            {"name": "orderId", "type": "bytes32", "indexed": True},
            {"name": "maker", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "OrderAccepted",
        "anonymous": False,
        "inputs": [
            {"name": "orderId", "type": "bytes32", "indexed": True},
            {"name": "taker", "type": "address", "indexed": True},
            {"name": "acceptedPrice", "type": "uint256", "indexed": False},
        ],
    },
]


def order_id_bytes(order_id: str) -> bytes:
    raw = bytes.fromhex(normalize_order_id(order_id)[2:])
    if len(raw) != 32:
        raise LedgerError(f"Order id must be 32 bytes, got {len(raw)}: {order_id}")
    return raw


def _created_from_log(log: Any) -> OrderCreatedEvent:
    args = log["args"]
    return OrderCreatedEvent(
        order_id=normalize_order_id(args["orderId"]),
        maker=args["maker"],
        amount=int(args["amount"]),
        block_number=int(log["blockNumber"]),
        log_index=int(log.get("logIndex", 0) or 0),
    )


def _accepted_from_log(log: Any) -> OrderAcceptedEvent:
    args = log["args"]
    return OrderAcceptedEvent(
        order_id=normalize_order_id(args["orderId"]),
        taker=args["taker"],
        accepted_price=int(args["acceptedPrice"]),
        block_number=int(log["blockNumber"]),
        log_index=int(log.get("logIndex", 0) or 0),
    )


class EventFilters:
    """Pair of live provider-side filters for the two order events."""

    def __init__(self, created: Any, accepted: Any):
        self.created = created
        self.accepted = accepted


class LedgerClient:
    """Thin wrapper around AsyncWeb3 and the OrderProtocol contract.

    Every call may raise provider errors; callers classify them with
    `resolver.chain.errors.classify_error`.
    """

    def __init__(self, config: ChainConfig):
        if not config.contract_address:
            raise LedgerError("CONTRACT_ADDRESS not set")
        self.config = config
        self.w3: AsyncWeb3 | None = None
        self.contract: Any = None

    def connect(self) -> None:
        """Create a fresh provider and contract binding."""
        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                self.config.rpc_url,
                request_kwargs={"timeout": self.config.rpc_timeout_seconds},
            )
        )
        self.contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self.config.contract_address),
            abi=ORDER_PROTOCOL_ABI,
        )
        logger.info("Ledger binding ready: rpc=%s contract=%s",
                    self.config.rpc_url, self.config.contract_address)

    async def reconnect(self) -> int:
        """Tear down the provider, rebuild it, and return the current height."""
        await self.close()
        self.connect()
        return await self.block_number()

    def _require(self) -> AsyncWeb3:
        if self.w3 is None or self.contract is None:
            self.connect()
        return self.w3

    async def block_number(self) -> int:
        w3 = self._require()
        return int(await w3.eth.block_number)

    async def chain_id(self) -> int:
        w3 = self._require()
        return int(await w3.eth.chain_id)

    async def balance(self, address: str) -> int:
        w3 = self._require()
        return int(await w3.eth.get_balance(AsyncWeb3.to_checksum_address(address)))

    async def get_order(self, order_id: str) -> Order:
        self._require()
        raw = await self.contract.functions.getOrder(order_id_bytes(order_id)).call()
        return Order.from_contract(order_id, raw)

    async def get_created_events(self, from_block: int, to_block: int) -> list[OrderCreatedEvent]:
        self._require()
        logs = await self.contract.events.OrderCreated.get_logs(
            from_block=from_block, to_block=to_block
        )
        return [_created_from_log(log) for log in logs]

    async def get_accepted_events(self, from_block: int, to_block: int) -> list[OrderAcceptedEvent]:
        self._require()
        logs = await self.contract.events.OrderAccepted.get_logs(
            from_block=from_block, to_block=to_block
        )
        return [_accepted_from_log(log) for log in logs]

    async def create_event_filters(self) -> EventFilters:
        self._require()
        created = await self.contract.events.OrderCreated.create_filter(from_block="latest")
        accepted = await self.contract.events.OrderAccepted.create_filter(from_block="latest")
        return EventFilters(created, accepted)

    async def poll_filters(
        self, filters: EventFilters
    ) -> tuple[list[OrderCreatedEvent], list[OrderAcceptedEvent]]:
        """Fetch new entries from both filters.

        Some providers answer eth_getFilterChanges with null instead of an
        empty list; that is treated as no new entries.
        """
        created = await filters.created.get_new_entries()
        accepted = await filters.accepted.get_new_entries()
        if not isinstance(created, list):
            created = []
        if not isinstance(accepted, list):
            accepted = []
        return (
            [_created_from_log(log) for log in created],
            [_accepted_from_log(log) for log in accepted],
        )

    async def uninstall_filters(self, filters: EventFilters) -> None:
        w3 = self._require()
        for f in (filters.created, filters.accepted):
            try:
                await w3.eth.uninstall_filter(f.filter_id)
            except Exception as e:
                logger.debug("Filter uninstall failed (ignored): %s", e)

    async def close(self) -> None:
        if self.w3 is None:
            return
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.warning("Error while closing RPC provider (continuing): %s", e)
        self.w3 = None
        self.contract = None
