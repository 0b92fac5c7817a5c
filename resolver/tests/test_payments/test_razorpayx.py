"""Tests for RazorpayXClient."""

import json

import httpx
import pytest
import respx
from httpx import Response

from resolver.config.schema import PaymentsConfig
from resolver.payments.razorpayx import (
    PaymentProviderError,
    RazorpayXClient,
    contact_reference,
    payout_reference,
)

BASE = "https://api.razorpay.com/v1"
ORDER_ID = "0x" + "ab" * 32


@pytest.fixture
def client():
    return RazorpayXClient(
        PaymentsConfig(account_number="2323230000000000"),
        key_id="rzp_test_key", key_secret="rzp_test_secret",
    )


class TestReferences:
    def test_contact_reference_uses_tail(self):
        ref = contact_reference(ORDER_ID)
        assert ref == "ord_" + ORDER_ID[-30:]
        assert len(ref) <= 40

    def test_payout_reference_truncated(self):
        ref = payout_reference(ORDER_ID)
        assert ref.startswith("order_0x")
        assert len(ref) == 40


class TestRazorpayXClient:
    def test_missing_keys_raise(self, monkeypatch):
        monkeypatch.delenv("RAZORPAYX_KEY_ID", raising=False)
        monkeypatch.delenv("RAZORPAYX_KEY_SECRET", raising=False)
        with pytest.raises(PaymentProviderError, match="not set"):
            RazorpayXClient()

    @pytest.mark.asyncio
    @respx.mock
    async def test_create_contact_new(self, client):
        route = respx.post(f"{BASE}/contacts").mock(
            return_value=Response(201, json={"id": "cont_1"})
        )
        contact = await client.create_contact(ORDER_ID)
        assert contact.id == "cont_1"
        assert contact.created
        request = route.calls.last.request
        assert request.headers["Authorization"].startswith("Basic ")
        assert json.loads(request.content)["reference_id"] == contact_reference(ORDER_ID)

    @pytest.mark.asyncio
    @respx.mock
    async def test_create_contact_existing(self, client):
        respx.post(f"{BASE}/contacts").mock(return_value=Response(200, json={"id": "cont_1"}))
        contact = await client.create_contact(ORDER_ID)
        assert not contact.created

    @pytest.mark.asyncio
    @respx.mock
    async def test_create_fund_account(self, client):
        route = respx.post(f"{BASE}/fund_accounts").mock(
            return_value=Response(201, json={"id": "fa_1"})
        )
        account = await client.create_fund_account("cont_1", "merchant@upi")
        assert account.id == "fa_1"
        body = json.loads(route.calls.last.request.content)
        assert body["account_type"] == "vpa"
        assert body["vpa"] == {"address": "merchant@upi"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_create_payout(self, client):
        route = respx.post(f"{BASE}/payouts").mock(
            return_value=Response(200, json={
                "id": "pout_1", "fund_account_id": "fa_1", "status": "processing",
                "utr": None, "fees": 590, "tax": 90,
            })
        )
        payout = await client.create_payout("fa_1", 25000, ORDER_ID, "idem-1")
        assert payout.id == "pout_1"
        assert payout.fees == 590
        request = route.calls.last.request
        assert request.headers["X-Payout-Idempotency"] == "idem-1"
        body = json.loads(request.content)
        assert body["amount"] == 25000
        assert body["account_number"] == "2323230000000000"
        assert body["queue_if_low_balance"] is True
        assert len(body["reference_id"]) <= 40
        assert len(body["narration"]) <= 30

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_error_description(self, client):
        respx.post(f"{BASE}/payouts").mock(
            return_value=Response(400, json={
                "error": {"code": "BAD_REQUEST_ERROR", "description": "Insufficient balance"},
            })
        )
        with pytest.raises(PaymentProviderError, match="Insufficient balance") as exc_info:
            await client.create_payout("fa_1", 25000, ORDER_ID, "idem-1")
        assert exc_info.value.stage == "payout"
        assert exc_info.value.error_class == "API Error 400"

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_wrapped(self, client):
        respx.post(f"{BASE}/payouts").mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(PaymentProviderError) as exc_info:
            await client.create_payout("fa_1", 25000, ORDER_ID, "idem-1")
        assert exc_info.value.status_code is None
        assert exc_info.value.error_class == "ReadTimeout"
