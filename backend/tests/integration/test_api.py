"""End-to-end tests through the HTTP API."""
import pytest
from httpx import AsyncClient

from tests.utils.identities import ADMIN_ID, BUYER_ID, CASHIER_ID, auth_headers
from tests.utils.factories import OrderRequestFactory


async def _create_order(client: AsyncClient, **overrides) -> dict:  # noqa: ANN003
    payload = OrderRequestFactory.create({"user_id": BUYER_ID, **overrides})
    response = await client.post("/v1/orders", json=payload, headers=auth_headers(BUYER_ID))
    assert response.status_code == 201, response.text
    return response.json()


async def _transition(client: AsyncClient, order_id: str, target: str, actor_id: str):  # noqa: ANN202
    return await client.post(
        f"/v1/orders/{order_id}/transitions",
        json={"target_status": target},
        headers=auth_headers(actor_id),
    )


@pytest.mark.asyncio
async def test_purchase_authorize_and_consume(async_client: AsyncClient) -> None:
    """Five credits bought, validated and authorized allow exactly five debits."""
    order = await _create_order(async_client, plan_credits=5)
    assert order["status"] == "pending_validation"

    response = await _transition(async_client, order["id"], "validated", CASHIER_ID)
    assert response.status_code == 200
    assert response.json()["receipt_number"].startswith("RCP-")

    response = await _transition(async_client, order["id"], "authorized", ADMIN_ID)
    assert response.status_code == 200
    assert response.json()["authorized_by"] == ADMIN_ID

    status = (await async_client.get(f"/v1/credits/{BUYER_ID}/status", headers=auth_headers(BUYER_ID))).json()
    assert status["total_credits"] == 5
    assert status["remaining_credits"] == 5
    assert status["has_available_credits"] is True

    for i in range(5):
        response = await async_client.post(
            f"/v1/credits/{BUYER_ID}/consume",
            json={"subject_id": f"sim-{i}", "label": "Simulation"},
            headers=auth_headers(BUYER_ID),
        )
        assert response.status_code == 201, response.text
        assert response.json()["order_number"] == order["order_number"]

    response = await async_client.post(
        f"/v1/credits/{BUYER_ID}/consume",
        json={"subject_id": "sim-6"},
        headers=auth_headers(BUYER_ID),
    )
    assert response.status_code == 402
    assert response.json()["error"] == "NoCreditsAvailable"

    pools = (await async_client.get(f"/v1/credits/{BUYER_ID}/pools", headers=auth_headers(BUYER_ID))).json()
    assert len(pools) == 1
    assert pools[0]["remaining_credits"] == 0
    assert pools[0]["status"] == "exhausted"

    usage = (await async_client.get(f"/v1/credits/{BUYER_ID}/usage", headers=auth_headers(BUYER_ID))).json()
    assert len(usage) == 5

    history = (await async_client.get(f"/v1/orders/{order['id']}/history", headers=auth_headers(ADMIN_ID))).json()
    assert [h["type"] for h in history] == ["validation", "authorization"]
    assert history[0]["validator_name"] == "Awa Cashier"


@pytest.mark.asyncio
async def test_invalid_transition_returns_conflict(async_client: AsyncClient) -> None:
    """Skipping validation is a 409 and creates no credits."""
    order = await _create_order(async_client)

    response = await _transition(async_client, order["id"], "authorized", ADMIN_ID)

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "InvalidTransition"
    assert body["details"][0]["code"] == "invalid_state_transition"

    pools = (await async_client.get(f"/v1/credits/{BUYER_ID}/pools", headers=auth_headers(BUYER_ID))).json()
    assert pools == []


@pytest.mark.asyncio
async def test_cashier_authorization_is_forbidden(async_client: AsyncClient) -> None:
    """Cashiers validate but cannot authorize."""
    order = await _create_order(async_client)
    await _transition(async_client, order["id"], "validated", CASHIER_ID)

    response = await _transition(async_client, order["id"], "authorized", CASHIER_ID)

    assert response.status_code == 403
    assert response.json()["error"] == "PermissionDenied"

    stored = (await async_client.get(f"/v1/orders/{order['id']}", headers=auth_headers(ADMIN_ID))).json()
    assert stored["status"] == "validated"


@pytest.mark.asyncio
async def test_buyer_cancels_own_order(async_client: AsyncClient) -> None:
    """The buyer may cancel their pending order."""
    order = await _create_order(async_client)

    response = await _transition(async_client, order["id"], "cancelled", BUYER_ID)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(async_client: AsyncClient) -> None:
    """Every ledger endpoint requires a bearer token."""
    response = await async_client.get(f"/v1/credits/{BUYER_ID}/status")
    assert response.status_code == 401

    response = await async_client.get(
        f"/v1/credits/{BUYER_ID}/status", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_order_validation_error(async_client: AsyncClient) -> None:
    """Malformed orders are rejected with field-level details."""
    payload = OrderRequestFactory.create({"plan_credits": 0})

    response = await async_client.post("/v1/orders", json=payload, headers=auth_headers(BUYER_ID))

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "ValidationError"
    assert any(detail["field"].endswith("plan_credits") for detail in body["details"])


@pytest.mark.asyncio
async def test_order_lookup_and_listing(async_client: AsyncClient) -> None:
    """Orders can be fetched by number, listed with filters and counted."""
    first = await _create_order(async_client)
    await _create_order(async_client)

    response = await async_client.get(
        f"/v1/orders/by-number/{first['order_number']}", headers=auth_headers(ADMIN_ID)
    )
    assert response.status_code == 200
    assert response.json()["id"] == first["id"]

    listing = (
        await async_client.get("/v1/orders", params={"user_id": BUYER_ID}, headers=auth_headers(ADMIN_ID))
    ).json()
    assert listing["total"] == 2

    stats = (await async_client.get("/v1/orders/stats", headers=auth_headers(ADMIN_ID))).json()
    assert stats["total_orders"] == 2
    assert stats["pending_validation"] == 2

    response = await async_client.get("/v1/orders/by-number/CMD-000000-NONE", headers=auth_headers(ADMIN_ID))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deactivate_pool_requires_admin(async_client: AsyncClient) -> None:
    """Only administrators deactivate pools; deactivated pools stop serving debits."""
    order = await _create_order(async_client, plan_credits=3)
    await _transition(async_client, order["id"], "validated", CASHIER_ID)
    await _transition(async_client, order["id"], "authorized", ADMIN_ID)
    pools = (await async_client.get(f"/v1/credits/{BUYER_ID}/pools", headers=auth_headers(BUYER_ID))).json()
    pool_id = pools[0]["id"]

    response = await async_client.post(
        f"/v1/credits/pools/{pool_id}/deactivate", json={"reason": "refund"}, headers=auth_headers(CASHIER_ID)
    )
    assert response.status_code == 403

    response = await async_client.post(
        f"/v1/credits/pools/{pool_id}/deactivate", json={"reason": "refund"}, headers=auth_headers(ADMIN_ID)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "inactive"

    response = await async_client.post(
        f"/v1/credits/{BUYER_ID}/consume", json={"subject_id": "sim-1"}, headers=auth_headers(BUYER_ID)
    )
    assert response.status_code == 402


@pytest.mark.asyncio
async def test_reconciliation_endpoints(async_client: AsyncClient, session_factory) -> None:
    """Administrators can scan the ledger and repair a missing pool."""
    from ledger.models.order import Order, OrderStatus
    from tests.utils.factories import OrderFactory

    async with session_factory() as session:
        order = Order(**OrderFactory.create({"status": OrderStatus.AUTHORIZED, "user_id": BUYER_ID}))
        session.add(order)
        await session.commit()

    response = await async_client.get("/v1/reconciliation", headers=auth_headers(CASHIER_ID))
    assert response.status_code == 403

    report = (await async_client.get("/v1/reconciliation", headers=auth_headers(ADMIN_ID))).json()
    assert report["authorized_orders_without_pool"] == [str(order.id)]

    response = await async_client.post(
        f"/v1/reconciliation/orders/{order.id}/repair", headers=auth_headers(ADMIN_ID)
    )
    assert response.status_code == 200
    assert response.json()["created"] is True

    report = (await async_client.get("/v1/reconciliation", headers=auth_headers(ADMIN_ID))).json()
    assert report["authorized_orders_without_pool"] == []


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    """Liveness and readiness probes answer."""
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await async_client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "healthy"


async def _authorized_order(client: AsyncClient, credits: int) -> dict:
    order = await _create_order(client, plan_credits=credits)
    await _transition(client, order["id"], "validated", CASHIER_ID)
    await _transition(client, order["id"], "authorized", ADMIN_ID)
    return order


@pytest.mark.asyncio
async def test_only_owner_or_admin_may_consume(async_client: AsyncClient) -> None:
    """A token holder cannot spend another user's credits."""
    await _authorized_order(async_client, credits=2)

    response = await async_client.post(
        f"/v1/credits/{BUYER_ID}/consume", json={"subject_id": "sim-x"}, headers=auth_headers("attacker-9")
    )
    assert response.status_code == 403
    assert response.json()["error"] == "PermissionDenied"

    response = await async_client.post(
        f"/v1/credits/{BUYER_ID}/consume", json={"subject_id": "sim-x"}, headers=auth_headers(CASHIER_ID)
    )
    assert response.status_code == 403

    response = await async_client.post(
        f"/v1/credits/{BUYER_ID}/consume", json={"subject_id": "sim-x"}, headers=auth_headers(ADMIN_ID)
    )
    assert response.status_code == 201

    status = (await async_client.get(f"/v1/credits/{BUYER_ID}/status", headers=auth_headers(BUYER_ID))).json()
    assert status["remaining_credits"] == 1

    response = await async_client.get(f"/v1/credits/{BUYER_ID}/usage", headers=auth_headers("attacker-9"))
    assert response.status_code == 403
    response = await async_client.get(f"/v1/credits/{BUYER_ID}/pools", headers=auth_headers(CASHIER_ID))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_orders_cannot_be_created_for_another_buyer(async_client: AsyncClient) -> None:
    """Buyers order for themselves; cashiers may order on a buyer's behalf."""
    payload = OrderRequestFactory.create({"user_id": "victim-1"})

    response = await async_client.post("/v1/orders", json=payload, headers=auth_headers("attacker-9"))
    assert response.status_code == 403

    response = await async_client.post("/v1/orders", json=payload, headers=auth_headers(CASHIER_ID))
    assert response.status_code == 201
    assert response.json()["user_id"] == "victim-1"


@pytest.mark.asyncio
async def test_reused_idempotency_key_for_other_subject_conflicts(async_client: AsyncClient) -> None:
    """Reusing a key for a different subject is a 409, and spends nothing."""
    await _authorized_order(async_client, credits=3)
    url = f"/v1/credits/{BUYER_ID}/consume"

    first = await async_client.post(
        url, json={"subject_id": "sim-1", "idempotency_key": "run-1"}, headers=auth_headers(BUYER_ID)
    )
    replay = await async_client.post(
        url, json={"subject_id": "sim-1", "idempotency_key": "run-1"}, headers=auth_headers(BUYER_ID)
    )
    conflict = await async_client.post(
        url, json={"subject_id": "sim-2", "idempotency_key": "run-1"}, headers=auth_headers(BUYER_ID)
    )

    assert first.status_code == 201
    assert replay.status_code == 201
    assert replay.json()["id"] == first.json()["id"]
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "IdempotencyConflict"

    status = (await async_client.get(f"/v1/credits/{BUYER_ID}/status", headers=auth_headers(BUYER_ID))).json()
    assert status["remaining_credits"] == 2


@pytest.mark.asyncio
async def test_list_orders_of_one_buyer(async_client: AsyncClient) -> None:
    """Buyers see their own orders; other buyers are refused."""
    order = await _create_order(async_client)

    response = await async_client.get(f"/v1/orders/users/{BUYER_ID}", headers=auth_headers(BUYER_ID))
    assert response.status_code == 200
    assert [o["id"] for o in response.json()] == [order["id"]]

    response = await async_client.get(f"/v1/orders/users/{BUYER_ID}", headers=auth_headers("attacker-9"))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_error_bodies_are_documented(async_client: AsyncClient) -> None:
    """The OpenAPI document describes the shared error body."""
    schema = (await async_client.get("/openapi.json")).json()

    assert "ErrorResponse" in schema["components"]["schemas"]
    consume = schema["paths"]["/v1/credits/{user_id}/consume"]["post"]["responses"]
    assert "402" in consume
    assert "409" in consume
