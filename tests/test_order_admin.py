"""
Tests for admin order updates.
"""
import pytest
from sqlalchemy import select

from cardshop.core.config import settings
from cardshop.core.exceptions import InvalidStateError, OrderNotFoundError
from cardshop.models import Order, OrderStatus, PaymentStatus
from cardshop.schemas.checkout import AdminOrderUpdate
from cardshop.services import order_admin

from conftest import order_request, reservations_for, stock_of


async def _place_and_pay(db, service, product, quantity=2) -> Order:
    placed = await service.create_order(db, order_request([(product, quantity)]))
    await service.confirm_payment(db, placed.order_number)
    result = await db.execute(select(Order.id).where(Order.order_number == placed.order_number))
    return await order_admin.get_order(db, result.scalar_one())


class TestUpdateOrder:

    @pytest.mark.asyncio
    async def test_mark_paid_and_ship(self, db, service, buyer, make_product):
        product = await make_product(stock=5)
        order = await _place_and_pay(db, service, product)

        order = await order_admin.update_order(db, order.id, AdminOrderUpdate(
            status=OrderStatus.PROCESSING, payment_status=PaymentStatus.COMPLETED,
        ))
        assert order.payment_status == PaymentStatus.COMPLETED

        order = await order_admin.update_order(db, order.id, AdminOrderUpdate(
            status=OrderStatus.SHIPPED, tracking_number="JP123456789",
        ))
        assert order.status == OrderStatus.SHIPPED
        assert order.shipped_at is not None
        assert order.tracking_number == "JP123456789"

    @pytest.mark.asyncio
    async def test_admin_cancel_restores_stock(self, db, service, buyer, make_product):
        product = await make_product(stock=5)
        pid = product.id
        order = await _place_and_pay(db, service, product)
        assert await stock_of(db, pid) == 3

        await order_admin.update_order(db, order.id, AdminOrderUpdate(
            status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED,
        ))

        assert await stock_of(db, pid) == 5
        assert await reservations_for(db, order.order_number) == []

    @pytest.mark.asyncio
    async def test_admin_cancel_after_buyer_cancel_restores_once(
        self, db, test_session_factory, service, buyer, make_product
    ):
        product = await make_product(stock=5)
        pid = product.id
        order = await _place_and_pay(db, service, product)
        order_id, order_number = order.id, order.order_number

        async with test_session_factory() as admin_db:
            # Admin opened the order while it was still PROCESSING
            stale = await order_admin.get_order(admin_db, order_id)
            assert stale.status == OrderStatus.PROCESSING

            cancelled = await service.cancel_order(db, order_number)
            assert cancelled.success is True
            assert await stock_of(db, pid) == 5

            updated = await order_admin.update_order(admin_db, order_id, AdminOrderUpdate(
                status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED,
            ))
            assert updated.status == OrderStatus.CANCELLED

        assert await stock_of(db, pid) == 5
        assert await reservations_for(db, order_number) == []

    @pytest.mark.asyncio
    async def test_buyer_cancel_after_admin_cancel_is_refused(self, db, service, buyer, make_product):
        product = await make_product(stock=5)
        pid = product.id
        order = await _place_and_pay(db, service, product)

        await order_admin.update_order(db, order.id, AdminOrderUpdate(
            status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED,
        ))
        result = await service.cancel_order(db, order.order_number)

        assert result.success is False
        assert await stock_of(db, pid) == 5

    @pytest.mark.asyncio
    async def test_illegal_pair_rejected(self, db, service, buyer, make_product):
        product = await make_product(stock=5)
        order = await _place_and_pay(db, service, product)

        with pytest.raises(InvalidStateError):
            await order_admin.update_order(db, order.id, AdminOrderUpdate(status=OrderStatus.CANCELLED))

    @pytest.mark.asyncio
    async def test_missing_order(self, db):
        with pytest.raises(OrderNotFoundError):
            await order_admin.get_order(db, 9999)


class TestAdminRoutes:

    @pytest.mark.asyncio
    async def test_requires_api_key_when_set(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-key")

        assert (await client.get("/api/admin/reservations/stats")).status_code == 401
        resp = await client.get(
            "/api/admin/reservations/stats",
            headers={"Authorization": "Bearer admin-key"},
        )
        assert resp.status_code == 200
        assert resp.json()["total_reservations"] == 0

    @pytest.mark.asyncio
    async def test_production_without_api_key_is_closed(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "")

        resp = await client.get("/api/admin/reservations/stats")
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_unknown_order_is_404(self, client):
        resp = await client.get("/api/admin/orders/9999")
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "ORDER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_patch_invalid_state_is_409(self, client, buyer, make_product):
        product = await make_product(stock=5)
        created = (await client.post("/api/checkout/orders", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "email": "buyer@example.com",
            "shipping_address": {
                "first_name": "Taro", "last_name": "Yamada", "street1": "1-2-3 Shibuya",
                "city": "Tokyo", "postal_code": "150-0002",
            },
        })).json()
        order = (await client.get(f"/api/checkout/orders/{created['order_number']}")).json()

        resp = await client.patch(f"/api/admin/orders/{order['id']}", json={"payment_status": "CANCELLED"})
        assert resp.status_code == 409

        resp = await client.patch(f"/api/admin/orders/{order['id']}", json={"notes": "Called buyer"})
        assert resp.status_code == 200
        assert resp.json()["notes"] == "Called buyer"
