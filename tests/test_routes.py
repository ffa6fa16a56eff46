from decimal import Decimal
import pytest
from uuid6 import uuid7
from freshcart.common.circuit_breaker import CircuitOpenError
from freshcart.common.utils import now
from freshcart.coupons import routes as coupons_routes
from freshcart.coupons.models import CouponValidation
from freshcart.orders import routes as orders_routes
from freshcart.orders.models import PlaceOrderResult, TransitionOutcome
from freshcart.orders.exceptions import OrderNotFound
from freshcart.products import routes as products_routes
from freshcart.recommendations import routes as reco_routes
from freshcart.schema.full_schema import OrderStatus
from freshcart.stock import routes as stock_routes
from freshcart.stock.models import StockCheckRow, StockInfo
from tests.fakes import card

url_prefix = "/api/v1"


def order_body(product_id, **extra):
    return {"delivery_address": "12 Market Road", "cart_items": [{"product_id": str(product_id), "quantity": 2}], **extra}


@pytest.mark.asyncio
async def test_orders_require_a_token(ac_client):
    response = await ac_client.post(f"{url_prefix}/orders", json=order_body(uuid7()))
    assert response.status_code in (401, 403)

    response = await ac_client.post(f"{url_prefix}/orders", json=order_body(uuid7()),
                                    headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_cannot_order_for_someone_else(ac_client, auth_headers):
    response = await ac_client.post(f"{url_prefix}/orders", json=order_body(uuid7(), user_id=str(uuid7())),
                                    headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_place_order_success(ac_client, auth_headers, user_id, monkeypatch):
    order_id = uuid7()
    calls = []

    async def fake_place_order(session, payload):
        calls.append(payload)
        return PlaceOrderResult(success=True, order_id=order_id, total=Decimal("99.50"))

    monkeypatch.setattr(orders_routes, "place_order", fake_place_order)

    response = await ac_client.post(f"{url_prefix}/orders", json=order_body(uuid7()), headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "ok"
    assert body["data"] == {"success": True, "order_id": str(order_id), "total": "99.50"}
    assert calls[0].user_id is None
    assert body["request_id"] == response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_place_order_conflict(ac_client, auth_headers, monkeypatch):
    pid = uuid7()

    async def fake_place_order(session, payload):
        return PlaceOrderResult(success=False, error="Insufficient stock for Milk. Only 1 available.",
                                product_id=pid, available=1, http_status=409)

    monkeypatch.setattr(orders_routes, "place_order", fake_place_order)

    response = await ac_client.post(f"{url_prefix}/orders", json=order_body(pid), headers=auth_headers)

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "ORDER_CONFLICT"
    assert error["details"] == {"success": False, "error": "Insufficient stock for Milk. Only 1 available.",
                                "product_id": str(pid), "available": 1}


@pytest.mark.asyncio
async def test_read_order_only_for_owner(ac_client, auth_headers, user_id, monkeypatch):
    own, foreign = uuid7(), uuid7()
    orders = {
        own: {"id": own, "user_id": user_id, "status": "pending", "subtotal": Decimal("10"),
              "discount_amount": Decimal("0"), "total_amount": Decimal("10"), "delivery_address": "12 Market Road",
              "created_at": now(), "delivered_at": None, "items": []},
    }
    orders[foreign] = {**orders[own], "id": foreign, "user_id": uuid7()}

    async def fake_get_order(session, order_id):
        if order_id not in orders:
            raise OrderNotFound(order_id)
        return orders[order_id]

    monkeypatch.setattr(orders_routes, "get_order", fake_get_order)

    response = await ac_client.get(f"{url_prefix}/orders/{own}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"

    response = await ac_client.get(f"{url_prefix}/orders/{foreign}", headers=auth_headers)
    assert response.status_code == 404

    response = await ac_client.get(f"{url_prefix}/orders/{uuid7()}", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "HTTP_404"


@pytest.mark.asyncio
async def test_status_update_is_admin_only(ac_client, auth_headers, admin_headers, monkeypatch):
    order_id = uuid7()

    async def fake_transition(session, oid, new_status):
        return TransitionOutcome(order_id=oid, previous_status=OrderStatus.PENDING, status=new_status, changed=True)

    monkeypatch.setattr(orders_routes, "transition_order_status", fake_transition)
    url = f"{url_prefix}/admin/orders/{order_id}/status"

    response = await ac_client.patch(url, json={"status": "confirmed"}, headers=auth_headers)
    assert response.status_code == 403

    response = await ac_client.patch(url, json={"status": "confirmed"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "confirmed"

    response = await ac_client.patch(url, json={"status": "shipped"}, headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_bulk_status_update_summary(ac_client, admin_headers, monkeypatch):
    ok, bad = uuid7(), uuid7()

    async def fake_bulk(session, order_ids, new_status):
        return [
            TransitionOutcome(order_id=ok, previous_status=OrderStatus.CONFIRMED, status=new_status, changed=True),
            TransitionOutcome(order_id=bad, error="Order is already delivered and its status can no longer change"),
        ]

    monkeypatch.setattr(orders_routes, "bulk_transition_order_status", fake_bulk)

    response = await ac_client.post(f"{url_prefix}/admin/orders/status",
                                    json={"order_ids": [str(ok), str(bad)], "status": "cancelled"},
                                    headers=admin_headers)

    data = response.json()["data"]
    assert data["updated"] == 1
    assert data["failed"] == 1
    assert len(data["results"]) == 2


@pytest.mark.asyncio
async def test_coupon_validation_route(ac_client, auth_headers, user_id, monkeypatch):
    seen = {}

    async def fake_validate(session, uid, code, subtotal):
        seen.update(user_id=uid, code=code, subtotal=subtotal)
        return CouponValidation(valid=False, error="This coupon has expired")

    monkeypatch.setattr(coupons_routes, "validate_coupon", fake_validate)

    response = await ac_client.post(f"{url_prefix}/coupons/validate", json={"code": "OLD", "subtotal": "120"},
                                    headers=auth_headers)

    assert response.json()["data"] == {"valid": False, "error": "This coupon has expired"}
    assert seen == {"user_id": user_id, "code": "OLD", "subtotal": Decimal("120")}


@pytest.mark.asyncio
async def test_stock_check_route(ac_client, monkeypatch):
    pid = uuid7()

    async def fake_check(session, items):
        return [StockCheckRow(product_id=pid, product_name="Milk", requested_quantity=items[0].quantity,
                              available_stock=1, is_available=False, price=Decimal("50"))]

    monkeypatch.setattr(stock_routes, "check_stock_with_variants", fake_check)

    response = await ac_client.post(f"{url_prefix}/stock/check",
                                    json={"items": [{"product_id": str(pid), "quantity": 3}]})

    data = response.json()["data"]
    assert data["all_available"] is False
    assert data["items"][0]["requested_quantity"] == 3


@pytest.mark.asyncio
async def test_invalid_body_gets_error_envelope(ac_client):
    response = await ac_client.post(f"{url_prefix}/stock/check", json={"items": [{"product_id": "x"}]})
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "UNPROCESSABLE_ENTITY"
    assert {f["field"] for f in error["details"]["fields"]} >= {"items.0.product_id"}


@pytest.mark.asyncio
async def test_open_circuit_maps_to_503(ac_client, monkeypatch):
    async def unavailable(session, limit, days):
        raise CircuitOpenError("circuit postgres is open")

    monkeypatch.setattr(reco_routes, "get_trending_products", unavailable)

    response = await ac_client.get(f"{url_prefix}/recommendations/trending")
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "DB_UNAVAILABLE"
    assert response.headers["retry-after"] == "5"


@pytest.mark.asyncio
async def test_recommendation_routes(ac_client, auth_headers, user_id, monkeypatch):
    product = card(name="Bananas")
    seen = {}

    async def fake_trending(session, limit, days):
        seen["trending"] = (limit, days)
        return [product]

    async def fake_personalized(session, uid):
        seen["personalized"] = uid
        return [product]

    async def fake_fbt(session, pid, limit, exclude):
        seen["fbt"] = (pid, limit, exclude)
        return []

    monkeypatch.setattr(reco_routes, "get_trending_products", fake_trending)
    monkeypatch.setattr(reco_routes, "get_personalized_recommendations", fake_personalized)
    monkeypatch.setattr(reco_routes, "get_frequently_bought_together", fake_fbt)

    response = await ac_client.get(f"{url_prefix}/recommendations/trending?limit=5&days=14")
    assert response.json()["data"]["products"][0]["name"] == "Bananas"
    assert seen["trending"] == (5, 14)

    response = await ac_client.get(f"{url_prefix}/recommendations/personalized")
    assert response.json()["data"]["personalized"] is False
    assert seen["personalized"] is None

    response = await ac_client.get(f"{url_prefix}/recommendations/personalized", headers=auth_headers)
    assert response.json()["data"]["personalized"] is True
    assert seen["personalized"] == user_id

    excluded = uuid7()
    anchor = uuid7()
    response = await ac_client.get(f"{url_prefix}/recommendations/frequently-bought-together/{anchor}",
                                   params={"exclude": [str(excluded)]})
    assert response.status_code == 200
    assert seen["fbt"] == (anchor, 4, [excluded])

    response = await ac_client.get(f"{url_prefix}/recommendations/buy-again")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_product_detail_tracks_views(ac_client, auth_headers, user_id, monkeypatch):
    pid, inactive = uuid7(), uuid7()
    tracked = []

    async def fake_details(session, product_id):
        if product_id == pid:
            return {"id": pid, "name": "Milk", "price": Decimal("50"), "stock_quantity": 3, "is_active": True,
                    "variants": []}
        if product_id == inactive:
            return {"id": inactive, "name": "Old", "price": Decimal("5"), "stock_quantity": 3, "is_active": False,
                    "variants": []}
        return None

    def fake_track(uid, product_id):
        tracked.append((uid, product_id))
        return uid is not None

    monkeypatch.setattr(products_routes, "fetch_product_details", fake_details)
    monkeypatch.setattr(products_routes, "track_product_view", fake_track)

    response = await ac_client.get(f"{url_prefix}/products/{pid}?track=true", headers=auth_headers)
    data = response.json()["data"]
    assert data["stock_status"] == {"label": "Only 3 left", "variant": "warning"}
    assert data["low_stock"] is True
    assert tracked == [(user_id, pid)]

    assert (await ac_client.get(f"{url_prefix}/products/{inactive}")).status_code == 404
    assert (await ac_client.get(f"{url_prefix}/products/{uuid7()}")).status_code == 404

    response = await ac_client.post(f"{url_prefix}/products/{pid}/views", headers=auth_headers)
    assert response.status_code == 202
    assert response.json()["data"] == {"queued": True}


@pytest.mark.asyncio
async def test_admin_stock_update_publishes(ac_client, admin_headers, null_session, monkeypatch):
    pid = uuid7()
    published = []

    async def fake_set_stock(session, product_id, stock_quantity, is_active=None):
        return StockInfo(product_id=product_id, product_name="Milk", stock_quantity=stock_quantity,
                         is_active=True, price=Decimal("50"))

    async def fake_publish(events):
        published.extend(events)

    monkeypatch.setattr(products_routes, "set_product_stock", fake_set_stock)
    monkeypatch.setattr(products_routes, "publish_stock_changes", fake_publish)

    response = await ac_client.patch(f"{url_prefix}/admin/products/{pid}/stock", json={"stock_quantity": 12},
                                     headers=admin_headers)

    assert response.status_code == 200
    assert null_session.commits == 1
    assert [(ev.product_id, ev.new_stock_quantity) for ev in published] == [(pid, 12)]

    response = await ac_client.patch(f"{url_prefix}/admin/products/{pid}/stock", json={"stock_quantity": -1},
                                     headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_health(ac_client, null_session):
    response = await ac_client.get(f"{url_prefix}/health")
    assert response.json() == {"status": "healthy"}

    null_session.execute_error = ConnectionRefusedError("db down")
    response = await ac_client.get(f"{url_prefix}/health")
    assert response.status_code == 503
