"""HTTP adapter tests: routes, identity headers and error mapping."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING

import httpx
import pytest
from support import ADMIN, AGENT, BUYER, OTHER_AGENT, SELLER, fund_wallet

from order_settlement.domain.actor import Actor
from order_settlement.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def as_(actor: Actor) -> dict[str, str]:
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role.value}


ORDER_BODY = {
    "seller_id": SELLER.id,
    "lines": [{"item_id": "sku-1", "quantity": 1, "unit_base_price": "1000"}],
}


@pytest.fixture
async def client(orchestrator) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app()
    app.state.orchestrator = orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create_order(client: httpx.AsyncClient) -> dict:
    response = await client.post("/api/v1/orders", json=ORDER_BODY, headers=as_(BUYER))
    assert response.status_code == 201
    return response.json()


async def _paid_order(client: httpx.AsyncClient, session_factory) -> dict:
    order = await _create_order(client)
    await fund_wallet(session_factory, BUYER.id, order["display_total"])
    response = await client.post(
        f"/api/v1/orders/{order['id']}/escrow", json={}, headers=as_(BUYER)
    )
    assert response.status_code == 201
    return order


async def _delivered_order(client: httpx.AsyncClient, session_factory) -> dict:
    order = await _paid_order(client, session_factory)
    response = await client.post(f"/api/v1/orders/{order['id']}/claim", headers=as_(AGENT))
    assert response.status_code == 200
    for target in ("picked_up", "in_delivery", "delivered"):
        response = await client.patch(
            f"/api/v1/orders/{order['id']}/status",
            json={"target_status": target},
            headers=as_(AGENT),
        )
        assert response.status_code == 200
    return response.json()


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_headers(self, client) -> None:
        response = await client.post("/api/v1/orders", json=ORDER_BODY)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role(self, client) -> None:
        response = await client.post(
            "/api/v1/orders",
            json=ORDER_BODY,
            headers={"X-Actor-Id": "x", "X-Actor-Role": "superuser"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_assumed(self, client) -> None:
        response = await client.post(
            "/api/v1/orders",
            json=ORDER_BODY,
            headers={"X-Actor-Id": "SYSTEM", "X-Actor-Role": "system"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client) -> None:
        response = await client.post(
            "/api/v1/orders",
            json=ORDER_BODY,
            headers={**as_(BUYER), "X-Request-ID": "req-42"},
        )
        assert response.headers["X-Request-ID"] == "req-42"


class TestOrderFlow:
    @pytest.mark.asyncio
    async def test_create_order(self, client) -> None:
        order = await _create_order(client)

        assert order["status"] == "pending_payment"
        assert Decimal(order["display_total"]) == Decimal("1210")
        assert order["version"] >= 1
        assert order["lines"][0]["item_id"] == "sku-1"

    @pytest.mark.asyncio
    async def test_end_to_end_settlement(self, client, session_factory) -> None:
        order = await _delivered_order(client, session_factory)
        assert order["status"] == "delivered"
        assert order["grace_period_ends_at"] is not None

        response = await client.post(
            f"/api/v1/orders/{order['id']}/confirm-receipt", headers=as_(BUYER)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        seller = await client.get(f"/api/v1/wallets/{SELLER.id}", headers=as_(SELLER))
        assert Decimal(seller.json()["balance"]) == Decimal("1000")
        platform = await client.get("/api/v1/platform/balance", headers=as_(ADMIN))
        assert Decimal(platform.json()["balance"]) == Decimal("10")

        escrow = await client.get(f"/api/v1/orders/{order['id']}/escrow", headers=as_(ADMIN))
        assert escrow.json()["status"] == "released"

        events = await client.get(f"/api/v1/orders/{order['id']}/events", headers=as_(ADMIN))
        assert events.json()[-1]["event_type"] == "EscrowReleased"

    @pytest.mark.asyncio
    async def test_refund_cancels(self, client, session_factory) -> None:
        order = await _paid_order(client, session_factory)

        response = await client.post(
            f"/api/v1/orders/{order['id']}/refund",
            json={"reason": "changed my mind"},
            headers=as_(BUYER),
        )

        assert response.status_code == 200
        assert response.json()["kind"] == "refunded"
        assert Decimal(response.json()["buyer_refund_amount"]) == Decimal("1210")

    @pytest.mark.asyncio
    async def test_dispute_and_resolve(self, client, session_factory) -> None:
        order = await _delivered_order(client, session_factory)

        disputed = await client.post(
            f"/api/v1/orders/{order['id']}/dispute",
            json={"reason": "box was empty"},
            headers=as_(BUYER),
        )
        assert disputed.json()["status"] == "disputed"

        resolved = await client.post(
            f"/api/v1/orders/{order['id']}/resolve",
            json={"refund": False},
            headers=as_(ADMIN),
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "confirmed"
        assert resolved.json()["agent_id"] is None


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_second_hold_is_idempotent_conflict(self, client, session_factory) -> None:
        order = await _paid_order(client, session_factory)

        response = await client.post(
            f"/api/v1/orders/{order['id']}/escrow", json={}, headers=as_(BUYER)
        )

        assert response.status_code == 409
        assert response.json() == {
            "error": "ALREADY_HELD",
            "message": response.json()["message"],
            "idempotent": True,
        }

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, client) -> None:
        order = await _create_order(client)
        response = await client.post(
            f"/api/v1/orders/{order['id']}/escrow", json={}, headers=as_(BUYER)
        )
        assert response.status_code == 402
        assert response.json()["error"] == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, client, session_factory) -> None:
        order = await _create_order(client)
        await fund_wallet(session_factory, BUYER.id, "5000")

        response = await client.post(
            f"/api/v1/orders/{order['id']}/escrow", json={"amount": "999"}, headers=as_(BUYER)
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_order(self, client) -> None:
        response = await client.get(
            "/api/v1/orders/00000000-0000-0000-0000-000000000000", headers=as_(ADMIN)
        )
        assert response.status_code == 404
        assert response.json()["error"] == "ORDER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_illegal_transition(self, client) -> None:
        order = await _create_order(client)
        response = await client.patch(
            f"/api/v1/orders/{order['id']}/status",
            json={"target_status": "delivered"},
            headers=as_(ADMIN),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "ILLEGAL_TRANSITION"
        assert response.json()["idempotent"] is False

    @pytest.mark.asyncio
    async def test_unauthorized_role(self, client) -> None:
        response = await client.put(
            "/api/v1/commission-settings/platform_commission",
            json={"rate": "0.15"},
            headers=as_(SELLER),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_other_users_wallet(self, client) -> None:
        response = await client.get(f"/api/v1/wallets/{SELLER.id}", headers=as_(BUYER))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_racing_claims(self, client, session_factory) -> None:
        order = await _paid_order(client, session_factory)

        responses = await asyncio.gather(
            client.post(f"/api/v1/orders/{order['id']}/claim", headers=as_(AGENT)),
            client.post(f"/api/v1/orders/{order['id']}/claim", headers=as_(OTHER_AGENT)),
        )

        assert sorted(r.status_code for r in responses) == [200, 409]
        loser = next(r for r in responses if r.status_code == 409)
        assert loser.json()["idempotent"] is True


class TestReleaseRequests:
    @pytest.mark.asyncio
    async def test_request_duplicate_and_reject(self, client, session_factory) -> None:
        order = await _delivered_order(client, session_factory)
        url = f"/api/v1/orders/{order['id']}/release-requests"

        created = await client.post(url, json={"reason": "delivered"}, headers=as_(SELLER))
        assert created.status_code == 201
        duplicate = await client.post(url, json={}, headers=as_(AGENT))
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "DUPLICATE_PENDING"

        request_id = created.json()["id"]
        early = await client.post(
            f"/api/v1/release-requests/{request_id}/approve", json={}, headers=as_(ADMIN)
        )
        assert early.status_code == 400
        assert early.json()["error"] == "NOT_ELIGIBLE"

        missing_reason = await client.post(
            f"/api/v1/release-requests/{request_id}/reject", json={}, headers=as_(ADMIN)
        )
        assert missing_reason.status_code == 422

        rejected = await client.post(
            f"/api/v1/release-requests/{request_id}/reject",
            json={"reason": "await buyer"},
            headers=as_(ADMIN),
        )
        assert rejected.json()["status"] == "rejected"

        listed = await client.get(url, headers=as_(SELLER))
        assert [r["status"] for r in listed.json()] == ["rejected"]


class TestCommissionSettings:
    @pytest.mark.asyncio
    async def test_admin_sets_rate(self, client) -> None:
        response = await client.put(
            "/api/v1/commission-settings/platform_commission",
            json={"rate": "0.15"},
            headers=as_(ADMIN),
        )
        assert response.status_code == 200

        listed = await client.get("/api/v1/commission-settings", headers=as_(SELLER))
        assert [(s["key"], Decimal(s["rate"])) for s in listed.json()] == [
            ("platform_commission", Decimal("0.15"))
        ]

        order = await _create_order(client)
        assert Decimal(order["display_total"]) == Decimal("1150")
