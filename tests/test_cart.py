from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    InvalidQuantity,
    ItemNotInCart,
    OutOfStock,
    ProductNotFound,
)
from storefront.models.activity_log import ActivityLog, ActivityType
from storefront.models.cart import CartItem
from storefront.services.cart_service import CartService


def _activity_types(db: Session) -> list:
    return [entry.activity_type for entry in db.query(ActivityLog).order_by(ActivityLog.id).all()]


def test_get_cart_creates_empty_cart_once(db_session, customer):
    first = CartService.get_cart(db_session, customer)
    second = CartService.get_cart(db_session, customer)

    assert first.id == second.id
    assert first.items == []
    assert _activity_types(db_session) == []


def test_add_item_snapshots_title_and_price(db_session, customer, make_product):
    make_product("p1", price="10.00", title="Colombian Arabica")

    cart = CartService.add_item(db_session, customer, "p1", 2)

    assert len(cart.items) == 1
    line = cart.items[0]
    assert line.title == "Colombian Arabica"
    assert line.unit_price == Decimal("10.00")
    assert line.quantity == 2
    assert _activity_types(db_session) == [ActivityType.ADD_TO_CART]
    entry = db_session.query(ActivityLog).one()
    assert entry.details == {"product_id": "p1", "quantity": 2}
    assert entry.username == "alice"


def test_add_existing_line_keeps_original_price(db_session, customer, make_product):
    product = make_product("p1", price="10.00")
    CartService.add_item(db_session, customer, "p1", 1)

    product.price = Decimal("12.50")
    db_session.commit()
    cart = CartService.add_item(db_session, customer, "p1", 2)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.items[0].unit_price == Decimal("10.00")


@pytest.mark.parametrize("quantity", [0, -1, 2.5, "3", True, None])
def test_add_item_rejects_non_positive_integers(db_session, customer, make_product, quantity):
    make_product("p1")

    with pytest.raises(InvalidQuantity):
        CartService.add_item(db_session, customer, "p1", quantity)

    assert db_session.query(CartItem).count() == 0
    assert _activity_types(db_session) == []


def test_add_item_unknown_product(db_session, customer):
    with pytest.raises(ProductNotFound) as exc_info:
        CartService.add_item(db_session, customer, "missing", 1)

    assert exc_info.value.code == "ProductNotFound"
    assert exc_info.value.status_code == 404
    assert _activity_types(db_session) == []


def test_add_item_out_of_stock(db_session, customer, make_product):
    make_product("p1", in_stock=False)

    with pytest.raises(OutOfStock):
        CartService.add_item(db_session, customer, "p1", 1)

    assert db_session.query(CartItem).count() == 0


def test_set_quantity_updates_line(db_session, customer, make_product):
    make_product("p1")
    CartService.add_item(db_session, customer, "p1", 1)

    cart = CartService.set_quantity(db_session, customer, "p1", 6)

    assert cart.items[0].quantity == 6
    assert _activity_types(db_session) == [ActivityType.ADD_TO_CART, ActivityType.UPDATE_CART]


def test_set_quantity_zero_removes_line(db_session, customer, make_product):
    make_product("p1")
    make_product("p2")
    CartService.add_item(db_session, customer, "p1", 3)
    CartService.add_item(db_session, customer, "p2", 1)

    CartService.set_quantity(db_session, customer, "p1", 0)

    cart = CartService.get_cart(db_session, customer)
    assert [item.product_id for item in cart.items] == ["p2"]
    assert _activity_types(db_session)[-1] == ActivityType.REMOVE_FROM_CART


def test_set_quantity_negative_behaves_like_remove(db_session, customer, make_product):
    make_product("p1")
    CartService.add_item(db_session, customer, "p1", 3)

    CartService.set_quantity(db_session, customer, "p1", -4)

    assert db_session.query(CartItem).count() == 0


def test_set_quantity_missing_line(db_session, customer, make_product):
    make_product("p1")

    with pytest.raises(ItemNotInCart):
        CartService.set_quantity(db_session, customer, "p1", 2)
    with pytest.raises(ItemNotInCart):
        CartService.set_quantity(db_session, customer, "p1", 0)


def test_remove_item_is_idempotent(db_session, customer, make_product):
    make_product("p1")
    CartService.add_item(db_session, customer, "p1", 1)

    CartService.remove_item(db_session, customer, "p1")
    cart = CartService.remove_item(db_session, customer, "p1")

    assert cart.items == []
    assert _activity_types(db_session) == [ActivityType.ADD_TO_CART, ActivityType.REMOVE_FROM_CART]


def test_clear_cart_logs_every_time(db_session, customer, make_product):
    make_product("p1")
    make_product("p2")
    CartService.add_item(db_session, customer, "p1", 1)
    CartService.add_item(db_session, customer, "p2", 1)

    CartService.clear_cart(db_session, customer)
    cart = CartService.clear_cart(db_session, customer)

    assert cart.items == []
    clears = (
        db_session.query(ActivityLog)
        .filter(ActivityLog.activity_type == ActivityType.CLEAR_CART)
        .order_by(ActivityLog.id)
        .all()
    )
    assert [entry.details["items_removed"] for entry in clears] == [2, 0]


def test_quantity_never_drops_below_one(db_session, customer, make_product):
    make_product("p1")
    CartService.add_item(db_session, customer, "p1", 2)

    for quantity in (5, 1, 0, -3):
        try:
            CartService.set_quantity(db_session, customer, "p1", quantity)
        except ItemNotInCart:
            pass
        assert all(item.quantity >= 1 for item in db_session.query(CartItem).all())


def test_mutations_bump_cart_version(db_session, customer, make_product):
    make_product("p1")
    start = CartService.get_cart(db_session, customer).version

    CartService.add_item(db_session, customer, "p1", 1)
    CartService.set_quantity(db_session, customer, "p1", 2)

    assert CartService.get_cart(db_session, customer).version == start + 2


def test_stale_writer_sees_committed_line(session_factory, db_session, customer, make_product):
    """A second request working from an old read still increments the committed line."""
    make_product("p1")
    CartService.get_cart(db_session, customer)

    first = session_factory()
    second = session_factory()
    try:
        first_user = first.merge(customer)
        second_user = second.merge(customer)
        stale_cart = CartService.get_cart(second, second_user)
        assert list(stale_cart.items) == []

        CartService.add_item(first, first_user, "p1", 1)
        cart = CartService.add_item(second, second_user, "p1", 2)

        assert [(item.product_id, item.quantity) for item in cart.items] == [("p1", 3)]
    finally:
        first.close()
        second.close()


def test_carts_are_isolated_per_user(db_session, customer, make_user, make_product):
    bob = make_user("bob")
    make_product("p1")

    CartService.add_item(db_session, customer, "p1", 1)
    CartService.add_item(db_session, bob, "p1", 4)

    assert CartService.get_cart(db_session, customer).items[0].quantity == 1
    assert CartService.get_cart(db_session, bob).items[0].quantity == 4


# --------------------------------------------------
# HTTP
# --------------------------------------------------
def test_cart_endpoints_round_trip(client, customer, make_product, auth_for):
    make_product("p1", price="10.00")
    headers = auth_for(customer)

    response = client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 3}, headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["subtotal"] == "30.00"
    assert body["data"]["items"][0]["line_subtotal"] == "30.00"

    response = client.put("/api/v1/cart/items/p1", json={"quantity": 0}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["items"] == []

    response = client.get("/api/v1/cart/", headers=headers)
    assert response.json()["data"] == {"items": [], "subtotal": "0.00", "total_items": 0}


def test_cart_errors_use_envelope(client, customer, make_product, auth_for):
    make_product("p1")
    headers = auth_for(customer)

    response = client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 0}, headers=headers)
    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "InvalidQuantity"

    response = client.put("/api/v1/cart/items/p1", json={"quantity": 2}, headers=headers)
    assert response.status_code == 404
    assert response.json()["errors"][0]["code"] == "ItemNotInCart"

    response = client.delete("/api/v1/cart/items/p1", headers=headers)
    assert response.status_code == 200


def test_cart_requires_authentication(client):
    response = client.get("/api/v1/cart/")
    assert response.status_code == 401
    assert response.json()["errors"][0]["code"] == "NotAuthenticated"
