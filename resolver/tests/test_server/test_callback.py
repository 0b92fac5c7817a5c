"""Tests for the callback listener."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import ORDER_ID, OTHER_RESOLVER, RESOLVER
from resolver.server.callback import create_callback_app


@pytest.fixture
def schedule():
    return MagicMock()


@pytest.fixture
def client(context, schedule):
    return TestClient(create_callback_app(context, schedule))


class TestHealth:
    def test_reports_state(self, client, context):
        context.health.last_seen_block = 321
        context.registry.try_begin(ORDER_ID)
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["resolver"] == RESOLVER
        assert body["mode"] == "polling"
        assert body["watermark"] == 321
        assert body["processing"] == 1
        assert body["processed"] == 0
        assert body["active_auctions"] == 0


class TestOrderAcceptedCallback:
    def test_schedules_settlement_for_us(self, client, schedule):
        resp = client.post("/callback/order-accepted", json={
            "type": "ORDER_ACCEPTED",
            "orderId": ORDER_ID,
            "resolverAddress": RESOLVER.upper().replace("0X", "0x"),
            "details": {"acceptedPrice": "950"},
        })
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Callback received"}
        schedule.assert_called_once_with(ORDER_ID)

    def test_ignores_other_resolver(self, client, schedule):
        resp = client.post("/callback/order-accepted", json={
            "type": "ORDER_ACCEPTED", "orderId": ORDER_ID, "resolverAddress": OTHER_RESOLVER,
        })
        assert resp.status_code == 200
        schedule.assert_not_called()

    def test_ignores_other_types(self, client, schedule):
        resp = client.post("/callback/order-accepted", json={
            "type": "ORDER_FULFILLED", "orderId": ORDER_ID, "resolverAddress": RESOLVER,
        })
        assert resp.status_code == 200
        schedule.assert_not_called()

    def test_malformed_body(self, client, schedule):
        resp = client.post("/callback/order-accepted", json={"type": "ORDER_ACCEPTED"})
        assert resp.status_code == 422
        schedule.assert_not_called()

    def test_handler_error_returns_500(self, client, schedule):
        schedule.side_effect = RuntimeError("no loop")
        resp = client.post("/callback/order-accepted", json={
            "type": "ORDER_ACCEPTED", "orderId": ORDER_ID, "resolverAddress": RESOLVER,
        })
        assert resp.status_code == 500
        assert resp.json() == {"error": "no loop"}
