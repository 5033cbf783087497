from storefront.core.celery_app import celery_app
from storefront.db.init_db import CATALOG_SEED, seed_catalog
from storefront.main import readiness
from storefront.models.product import Product
from storefront.tasks import order_tasks, security_tasks


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Correlation-ID" in response.headers


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_readiness_is_set_after_startup(client):
    assert client.get("/health/ready").status_code == 200

    readiness.clear()
    try:
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json() == {"status": "starting"}
    finally:
        readiness.set()


def test_unknown_route_is_404(client):
    assert client.get("/api/v1/nowhere").status_code == 404


def test_request_shape_errors_stay_422(client, customer, auth_for):
    response = client.post("/api/v1/cart/items", json={"quantity": 1}, headers=auth_for(customer))

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"


def test_seed_catalog_is_idempotent(db_session):
    assert seed_catalog(db_session) == len(CATALOG_SEED)
    db_session.commit()
    assert seed_catalog(db_session) == 0

    espresso = db_session.get(Product, "professional-espresso-machine")
    assert espresso.title == "Professional Espresso Machine"
    assert str(espresso.price) == "299.99"


def test_admin_orders_and_stats(client, db_session, admin_user, customer, auth_for, customer_info):
    seed_catalog(db_session)
    db_session.commit()
    headers = auth_for(customer)
    client.post("/api/v1/cart/items", json={"product_id": "french-press-deluxe"}, headers=headers)
    client.post("/api/v1/orders/", json={"customer_info": customer_info}, headers=headers)

    response = client.get("/api/v1/admin/orders", params={"status": "pending"}, headers=auth_for(admin_user))
    assert response.status_code == 200
    assert len(response.json()["data"]) == 1

    response = client.get("/api/v1/admin/orders", params={"status": "completed"}, headers=auth_for(admin_user))
    assert response.json()["data"] == []

    response = client.get("/api/v1/admin/stats", headers=auth_for(admin_user))
    stats = response.json()["data"]
    assert stats["total_orders"] == 1
    assert stats["total_products"] == len(CATALOG_SEED)
    assert stats["total_users"] == 2


def test_admin_lists_users_without_password_hashes(client, admin_user, customer, auth_for):
    response = client.get("/api/v1/admin/users", headers=auth_for(admin_user))

    assert response.status_code == 200
    body = response.json()
    assert sorted(user["username"] for user in body["data"]) == ["admin", "alice"]
    assert body["meta"]["total"] == 2
    assert all("password_hash" not in user for user in body["data"])

    response = client.get("/api/v1/admin/users", params={"role": "admin"}, headers=auth_for(admin_user))
    assert [user["role"] for user in response.json()["data"]] == ["admin"]

    response = client.get("/api/v1/admin/users", headers=auth_for(customer))
    assert response.status_code == 403


def test_admin_can_cancel_any_pending_order(client, admin_user, customer, make_product, auth_for, customer_info):
    make_product("p1")
    headers = auth_for(customer)
    client.post("/api/v1/cart/items", json={"product_id": "p1"}, headers=headers)
    order_id = client.post("/api/v1/orders/", json={"customer_info": customer_info}, headers=headers).json()["data"]["order"]["id"]

    response = client.post(f"/api/v1/orders/{order_id}/cancel", headers=auth_for(admin_user))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"


def test_beat_schedule_points_at_registered_tasks():
    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}

    assert scheduled == {
        order_tasks.expire_stale_orders.name,
        order_tasks.purge_expired_checkout_tokens.name,
        security_tasks.cleanup_expired_blacklisted_tokens.name,
    }
