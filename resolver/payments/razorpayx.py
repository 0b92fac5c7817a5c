"""RazorpayX API client: contacts, fund accounts and UPI payouts."""

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from resolver.config.schema import PaymentsConfig

logger = logging.getLogger(__name__)

CONTACT_REFERENCE_CHARS = 30  # provider limit on reference_id is 40
PAYOUT_REFERENCE_LIMIT = 40
NARRATION_LIMIT = 30


class PaymentProviderError(Exception):
    """Raised when RazorpayX returns an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        stage: str = "",
        status_code: int | None = None,
        details: Any = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.status_code = status_code
        self.details = details
        self.cause = cause

    @property
    def error_class(self) -> str:
        if self.status_code is not None:
            return f"API Error {self.status_code}"
        if self.cause is not None:
            return type(self.cause).__name__
        return "UNKNOWN_ERROR"


@dataclass(frozen=True)
class Contact:
    id: str
    reference_id: str
    created: bool


@dataclass(frozen=True)
class FundAccount:
    id: str
    contact_id: str
    created: bool


@dataclass(frozen=True)
class Payout:
    id: str
    fund_account_id: str
    status: str
    utr: str | None
    fees: int
    tax: int
    raw: dict


def contact_reference(order_id: str) -> str:
    """Deterministic contact reference: last 30 chars of the order id."""
    return f"ord_{order_id[-CONTACT_REFERENCE_CHARS:]}"


def payout_reference(order_id: str) -> str:
    return f"order_{order_id}"[:PAYOUT_REFERENCE_LIMIT]


def _error_message(resp: httpx.Response) -> tuple[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}", resp.text
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("description"):
            return err["description"], data
        if data.get("message"):
            return str(data["message"]), data
    return str(data), data


class RazorpayXClient:
    """Thin async wrapper around the RazorpayX payouts REST API.

    Credentials default to RAZORPAYX_KEY_ID / RAZORPAYX_KEY_SECRET and are
    sent as HTTP basic auth on every call.
    """

    def __init__(
        self,
        config: PaymentsConfig | None = None,
        key_id: str | None = None,
        key_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or PaymentsConfig()
        self.key_id = key_id or os.environ.get("RAZORPAYX_KEY_ID", "")
        self.key_secret = key_secret or os.environ.get("RAZORPAYX_KEY_SECRET", "")
        if not self.key_id or not self.key_secret:
            raise PaymentProviderError("RAZORPAYX_KEY_ID / RAZORPAYX_KEY_SECRET not set")
        self.account_number = self.config.account_number or os.environ.get(
            "RAZORPAYX_ACCOUNT_NUMBER", ""
        )
        self.base_url = self.config.base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout_seconds)

    async def _post(
        self,
        stage: str,
        endpoint: str,
        data: dict,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict]:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = await self._client.post(
                url,
                json=data,
                auth=(self.key_id, self.key_secret),
                headers={"Content-Type": "application/json", **(headers or {})},
                timeout=self.config.timeout_seconds,
            )
        except httpx.RequestError as e:
            logger.error("RazorpayX %s request failed: %s", stage, e)
            raise PaymentProviderError(
                f"Failed to create {stage}: {e}", stage=stage, cause=e
            ) from e

        if resp.status_code >= 400:
            message, details = _error_message(resp)
            logger.error("RazorpayX %s API error %d: %s", stage, resp.status_code, details)
            raise PaymentProviderError(
                f"Failed to create {stage}: {message}",
                stage=stage, status_code=resp.status_code, details=details,
            )
        return resp.status_code, resp.json()

    async def create_contact(self, order_id: str) -> Contact:
        """Create (or let the provider recognize) the payee contact for an order.

        The provider answers 200 with the existing record when an identical
        contact already exists, and 201 when it creates a new one.
        """
        reference_id = contact_reference(order_id)
        logger.info("Creating contact for order %s (ref: %s)", order_id, reference_id)
        status, data = await self._post("contact", "/contacts", {
            "name": self.config.contact_name,
            "email": self.config.contact_email,
            "contact": self.config.contact_phone,
            "type": "self",
            "reference_id": reference_id,
            "notes": {
                "order_id": order_id,
                "payment_type": "order_settlement",
            },
        })
        if not data.get("id"):
            raise PaymentProviderError("No contact ID returned", stage="contact", details=data)
        logger.info("Contact %s: %s", "created" if status == 201 else "reused", data["id"])
        return Contact(id=data["id"], reference_id=reference_id, created=status == 201)

    async def create_fund_account(self, contact_id: str, vpa: str) -> FundAccount:
        """Bind the recipient's UPI address (VPA) to a contact."""
        logger.info("Creating fund account for %s...", vpa)
        status, data = await self._post("fund account", "/fund_accounts", {
            "contact_id": contact_id,
            "account_type": "vpa",
            "vpa": {"address": vpa},
        })
        if not data.get("id"):
            raise PaymentProviderError(
                "No fund account ID returned", stage="fund account", details=data
            )
        logger.info("Fund account %s: %s", "created" if status == 201 else "reused", data["id"])
        return FundAccount(id=data["id"], contact_id=contact_id, created=status == 201)

    async def create_payout(
        self,
        fund_account_id: str,
        amount_paise: int,
        order_id: str,
        idempotency_key: str,
    ) -> Payout:
        """Send a UPI payout.

        Args:
            fund_account_id: Destination from `create_fund_account`.
            amount_paise: Integer amount in paise.
            order_id: Ledger order id, recorded in reference_id and notes.
            idempotency_key: Sent as X-Payout-Idempotency so the provider
                collapses retries of the same attempt.
        """
        logger.info("Creating payout of %d paise via fund account %s", amount_paise, fund_account_id)
        _, data = await self._post(
            "payout",
            "/payouts",
            {
                "account_number": self.account_number,
                "fund_account_id": fund_account_id,
                "amount": amount_paise,
                "currency": self.config.currency,
                "mode": self.config.mode,
                "purpose": "payout",
                "queue_if_low_balance": True,
                "reference_id": payout_reference(order_id),
                "narration": self.config.narration[:NARRATION_LIMIT],
                "notes": {
                    "order_id": order_id,
                    "payment_method": self.config.mode,
                    "processed_by": "resolver_bot",
                },
            },
            headers={"X-Payout-Idempotency": idempotency_key},
        )
        if not data.get("id"):
            raise PaymentProviderError("No payout ID returned", stage="payout", details=data)
        return Payout(
            id=data["id"],
            fund_account_id=data.get("fund_account_id", fund_account_id),
            status=str(data.get("status", "")),
            utr=data.get("utr"),
            fees=int(data.get("fees") or 0),
            tax=int(data.get("tax") or 0),
            raw=data,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
