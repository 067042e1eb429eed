"""
Tests for the checkout, orders and cron HTTP routes.
"""
import pytest

from cardshop.core.config import settings


def _order_body(product_id, quantity, **overrides):
    body = {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "email": "buyer@example.com",
        "shipping_address": {
            "first_name": "Taro",
            "last_name": "Yamada",
            "street1": "1-2-3 Shibuya",
            "city": "Tokyo",
            "postal_code": "150-0002",
        },
    }
    body.update(overrides)
    return body


class TestCheckoutRoutes:

    @pytest.mark.asyncio
    async def test_availability(self, client, make_product):
        product = await make_product(stock=2, name="Mewtwo")

        resp = await client.post("/api/checkout/availability", json={
            "items": [{"product_id": product.id, "quantity": 3}],
        })

        assert resp.status_code == 200
        data = resp.json()
        assert data["available"] is False
        assert data["shortages"] == [
            {"product_id": product.id, "name": "Mewtwo", "requested": 3, "available": 2}
        ]

    @pytest.mark.asyncio
    async def test_create_and_fetch_order(self, client, buyer, make_product):
        product = await make_product(stock=5, price=3000)

        resp = await client.post("/api/checkout/orders", json=_order_body(product.id, 2))

        assert resp.status_code == 201
        created = resp.json()
        assert created["success"] is True
        assert "reservation_expires_at" in created

        resp = await client.get(f"/api/checkout/orders/{created['order_number']}")
        assert resp.status_code == 200
        order = resp.json()
        assert order["status"] == "PENDING"
        assert order["payment_status"] == "PENDING"
        assert len(order["items"]) == 1

    @pytest.mark.asyncio
    async def test_shortage_maps_to_409(self, client, buyer, make_product):
        product = await make_product(stock=1)

        resp = await client.post("/api/checkout/orders", json=_order_body(product.id, 2))

        assert resp.status_code == 409
        data = resp.json()
        assert data["success"] is False
        assert data["error_code"] == "STOCK_SHORTAGE"
        assert data["shortages"][0]["available"] == 1

    @pytest.mark.asyncio
    async def test_confirm_then_cancel(self, client, buyer, make_product):
        product = await make_product(stock=5)
        created = (await client.post("/api/checkout/orders", json=_order_body(product.id, 2))).json()
        number = created["order_number"]

        resp = await client.post(f"/api/checkout/orders/{number}/confirm-payment")
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = await client.post(f"/api/checkout/orders/{number}/confirm-payment")
        assert resp.status_code == 409

        resp = await client.post(f"/api/checkout/orders/{number}/cancel")
        assert resp.status_code == 200

        order = (await client.get(f"/api/checkout/orders/{number}")).json()
        assert order["status"] == "CANCELLED"
        assert order["payment_status"] == "CANCELLED"

    @pytest.mark.asyncio
    async def test_unknown_order(self, client):
        assert (await client.get("/api/checkout/orders/CS-NOPE")).status_code == 404
        assert (await client.post("/api/checkout/orders/CS-NOPE/cancel")).status_code == 404


class TestBuyerReads:

    @pytest.mark.asyncio
    async def test_list_orders_and_addresses(self, client, buyer, make_product):
        product = await make_product(stock=5)
        await client.post("/api/checkout/orders", json=_order_body(product.id, 1, save_address=True))

        resp = await client.get("/api/orders", params={"email": "buyer@example.com"})
        assert resp.status_code == 200
        assert resp.json()["total"] == 1

        resp = await client.get("/api/addresses", params={"email": "buyer@example.com"})
        assert resp.status_code == 200
        addresses = resp.json()
        assert len(addresses) == 1
        assert addresses[0]["is_default"] is True
        assert addresses[0]["country"] == "JP"

    @pytest.mark.asyncio
    async def test_unknown_buyer(self, client):
        resp = await client.get("/api/orders", params={"email": "nobody@example.com"})
        assert resp.status_code == 404


class TestCronRoute:

    @pytest.mark.asyncio
    async def test_open_when_no_secret(self, client):
        resp = await client.post("/api/cron/cleanup-reservations")

        assert resp.status_code == 200
        assert resp.json()["success"] is True

    @pytest.mark.asyncio
    async def test_requires_bearer_when_secret_set(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")

        assert (await client.get("/api/cron/cleanup-reservations")).status_code == 401
        resp = await client.get(
            "/api/cron/cleanup-reservations",
            headers={"Authorization": "Bearer s3cret"},
        )
        assert resp.status_code == 200


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_reports_heartbeat(self, client):
        resp = await client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["database"] == "connected"
        assert "stock_cleanup" in data


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_checkout_limit_returns_429_with_window(self, client, buyer, make_product, monkeypatch):
        from cardshop.core.rate_limit import limiter

        product = await make_product(stock=100)
        monkeypatch.setattr(limiter, "enabled", True)
        limiter.reset()
        headers = {"X-Forwarded-For": "198.51.100.7"}

        try:
            for _ in range(10):
                resp = await client.post("/api/checkout/orders", json=_order_body(product.id, 1), headers=headers)
                assert resp.status_code == 201

            resp = await client.post("/api/checkout/orders", json=_order_body(product.id, 1), headers=headers)
        finally:
            limiter.reset()

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"
        data = resp.json()
        assert data["error_code"] == "RATE_LIMITED"
        assert data["retry_after"] == 60
