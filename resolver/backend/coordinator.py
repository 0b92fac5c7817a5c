"""Client for the order indexing / coordination backend."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from resolver.config.schema import CoordinatorConfig
from resolver.models.settlement import AcceptReceipt

logger = logging.getLogger(__name__)


class CoordinatorError(Exception):
    """Raised when the coordination backend returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.cause = cause

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


@dataclass(frozen=True)
class AuctionStatus:
    active: bool
    current_price: float | None


def _unwrap(payload: Any) -> Any:
    """Return `data` from a {success, data} envelope, else the payload."""
    if isinstance(payload, dict) and "data" in payload and isinstance(payload["data"], dict):
        return payload["data"]
    return payload


def _body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class CoordinatorClient:
    """Async wrapper around the backend's /orders endpoints."""

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or CoordinatorConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: dict | None = None,
        timeout: float | None = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = await self._client.request(
                method, url, json=data,
                timeout=timeout or self.config.timeout_seconds,
            )
        except httpx.RequestError as e:
            logger.error("Coordinator request failed: %s %s -> %s", method, endpoint, e)
            raise CoordinatorError(f"Request failed: {e}", cause=e) from e

        if resp.status_code >= 400:
            body = _body(resp)
            logger.error("Coordinator %d: %s %s -> %s", resp.status_code, method, endpoint, body)
            raise CoordinatorError(f"HTTP {resp.status_code}: {body}", resp.status_code, body)
        return _body(resp)

    async def accept_order(
        self, order_id: str, accepted_price: str, resolver_address: str
    ) -> AcceptReceipt:
        """Ask the backend to submit an acceptance transaction for us.

        Raises:
            CoordinatorError: 409 if another resolver already accepted,
                400 invalid price, 403 not a registered resolver, 404 unknown
                order, or a transport failure (status_code None).
        """
        payload = await self._request("POST", f"/orders/{order_id}/accept", {
            "acceptedPrice": accepted_price,
            "resolverAddress": resolver_address,
        })
        if isinstance(payload, dict) and payload.get("success") is False:
            raise CoordinatorError(f"Acceptance refused: {payload}", 200, payload)
        data = _unwrap(payload) if isinstance(payload, dict) else {}
        return AcceptReceipt(
            transaction_hash=str(data.get("transactionHash", "")),
            block_number=data.get("blockNumber"),
            gas_used=_as_int(data.get("gasUsed")),
        )

    async def fulfill_order(
        self, order_id: str, transaction_id: str, resolver_address: str
    ) -> Any:
        """Submit payout proof so the backend can mark the order fulfilled."""
        return await self._request("POST", f"/orders/{order_id}/fulfill", {
            "transactionId": transaction_id,
            "resolverAddress": resolver_address,
        })

    async def auction_status(self, order_id: str) -> AuctionStatus:
        payload = await self._request("GET", f"/orders/{order_id}/auction-status")
        if isinstance(payload, dict) and payload.get("success") is False:
            return AuctionStatus(active=False, current_price=None)
        data = _unwrap(payload) if isinstance(payload, dict) else {}
        price = data.get("currentPrice")
        return AuctionStatus(
            active=bool(data.get("active")),
            current_price=float(price) if price is not None else None,
        )

    async def register_resolver(self, resolver_address: str, callback_url: str) -> bool:
        """Register our callback URL. Best effort: never raises."""
        try:
            payload = await self._request(
                "POST", "/orders/resolver/register",
                {"resolverAddress": resolver_address, "callbackUrl": callback_url},
                timeout=self.config.register_timeout_seconds,
            )
        except CoordinatorError as e:
            logger.error("Failed to register callback with backend: %s", e)
            return False
        if isinstance(payload, dict) and payload.get("success") is False:
            logger.warning("Callback registration refused: %s", payload)
            return False
        logger.info("Callback registered: %s", callback_url)
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
