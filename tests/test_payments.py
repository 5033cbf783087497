from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.core.exceptions import (
    CheckoutTokenNotFound,
    InvalidCardNumber,
    InvalidCVV,
    InvalidExpiry,
    OrderNotFound,
    OrderNotPending,
)
from storefront.models.activity_log import ActivityLog, ActivityType
from storefront.models.checkout_token import CheckoutToken
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentReceipt
from storefront.services import payment_service
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService
from storefront.utils.clock import utcnow


@pytest.fixture()
def pending_order(db_session, customer, make_product, customer_info):
    make_product("p1", price="10.00")
    CartService.add_item(db_session, customer, "p1", 3)
    order, checkout = OrderService.create_order(db_session, customer, customer_info)
    return order, checkout


def _entries(db, activity_type):
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.activity_type == activity_type)
        .order_by(ActivityLog.id)
        .all()
    )


def test_successful_payment_completes_order(db_session, customer, pending_order, card):
    order, _ = pending_order

    paid = payment_service.process_payment(db_session, customer, order.id, card)

    assert paid.status == OrderStatus.COMPLETED
    assert paid.completed_at is not None
    receipt = paid.payment_details
    assert receipt.masked_last4 == "1111"
    assert receipt.method == "credit-card"
    assert receipt.transaction_id.startswith("tx_")
    assert receipt.amount == Decimal("42.39")
    assert CartService.get_cart(db_session, customer).items == []
    assert db_session.query(CheckoutToken).count() == 0

    success = _entries(db_session, ActivityType.PAYMENT_SUCCESS)
    assert len(success) == 1
    assert success[0].details["transaction_id"] == receipt.transaction_id
    assert _entries(db_session, ActivityType.CLEAR_CART) == []


def test_second_payment_is_rejected_and_order_unchanged(db_session, customer, pending_order, card):
    order, _ = pending_order
    paid = payment_service.process_payment(db_session, customer, order.id, card)
    transaction_id = paid.payment_details.transaction_id
    completed_at = paid.completed_at

    with pytest.raises(OrderNotPending) as exc_info:
        payment_service.process_payment(db_session, customer, order.id, card)

    assert exc_info.value.status_code == 409
    db_session.refresh(paid)
    assert paid.status == OrderStatus.COMPLETED
    assert paid.completed_at == completed_at
    assert db_session.query(PaymentReceipt).one().transaction_id == transaction_id
    assert len(_entries(db_session, ActivityType.PAYMENT_SUCCESS)) == 1


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"card_number": "4111"}, InvalidCardNumber),
        ({"card_number": "4111-1111-1111-1111"}, InvalidCardNumber),
        ({"card_number": "41111111111111111111"}, InvalidCardNumber),
        ({"expiry": "13/29"}, InvalidExpiry),
        ({"expiry": "00/29"}, InvalidExpiry),
        ({"expiry": "1229"}, InvalidExpiry),
        ({"cvv": "12"}, InvalidCVV),
        ({"cvv": "12a"}, InvalidCVV),
        ({"card_number": "\uff14\uff11\uff11\uff11" * 4}, InvalidCardNumber),
        ({"card_number": "\u0664\u0661\u0661\u0661" * 4}, InvalidCardNumber),
        ({"expiry": "\uff11\uff12/29"}, InvalidExpiry),
        ({"cvv": "\uff11\uff12\uff13"}, InvalidCVV),
        ({"cvv": "12345678901"}, InvalidCVV),
        ({"expiry": "12/29" + " " * 20 + "0"}, InvalidExpiry),
        ({"card_number": "4" * 60}, InvalidCardNumber),
    ],
)
def test_invalid_card_keeps_order_pending(db_session, customer, pending_order, card, overrides, error):
    order, _ = pending_order
    card.update(overrides)

    with pytest.raises(error):
        payment_service.process_payment(db_session, customer, order.id, card)

    db_session.refresh(order)
    assert order.status == OrderStatus.PENDING
    assert db_session.query(PaymentReceipt).count() == 0
    assert len(CartService.get_cart(db_session, customer).items) == 1
    failures = _entries(db_session, ActivityType.PAYMENT_FAILURE)
    assert [entry.details["error"] for entry in failures] == [error.code]


def test_past_expiry_is_accepted(db_session, customer, pending_order, card):
    order, _ = pending_order
    card["expiry"] = "01/20"

    paid = payment_service.process_payment(db_session, customer, order.id, card)

    assert paid.status == OrderStatus.COMPLETED


def test_retry_after_failure_succeeds(db_session, customer, pending_order, card):
    order, _ = pending_order
    bad = dict(card, cvv="1")

    for _ in range(3):
        with pytest.raises(InvalidCVV):
            payment_service.process_payment(db_session, customer, order.id, bad)

    paid = payment_service.process_payment(db_session, customer, order.id, card)

    assert paid.status == OrderStatus.COMPLETED
    assert len(_entries(db_session, ActivityType.PAYMENT_FAILURE)) == 3


def test_paying_a_foreign_order(db_session, make_user, pending_order, card):
    order, _ = pending_order
    mallory = make_user("mallory")

    with pytest.raises(OrderNotFound):
        payment_service.process_payment(db_session, mallory, order.id, card)

    db_session.refresh(order)
    assert order.status == OrderStatus.PENDING
    assert len(_entries(db_session, ActivityType.ACCESS_DENIED)) == 1


def test_paying_a_cancelled_order(db_session, customer, pending_order, card):
    order, _ = pending_order
    OrderService.cancel_order(db_session, customer, order.id)

    with pytest.raises(OrderNotPending):
        payment_service.process_payment(db_session, customer, order.id, card)


def test_concurrent_payments_yield_one_success(session_factory, db_session, customer, pending_order, card):
    """Both sessions read the order while pending; only one transition wins."""
    order, _ = pending_order
    first = session_factory()
    second = session_factory()
    try:
        first_user = first.merge(customer)
        second_user = second.merge(customer)
        assert second.get(Order, order.id).status == OrderStatus.PENDING

        payment_service.process_payment(first, first_user, order.id, card)

        with pytest.raises(OrderNotPending):
            payment_service.process_payment(second, second_user, order.id, card)
    finally:
        first.close()
        second.close()

    assert db_session.query(PaymentReceipt).count() == 1
    assert len(_entries(db_session, ActivityType.PAYMENT_SUCCESS)) == 1


def test_pay_with_checkout_token(db_session, customer, pending_order, card):
    order, checkout = pending_order

    paid = payment_service.pay_with_checkout_token(db_session, customer, checkout.token, card)

    assert paid.id == order.id
    assert paid.status == OrderStatus.COMPLETED


def test_expired_checkout_token(db_session, customer, pending_order, card):
    _, checkout = pending_order
    checkout.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(CheckoutTokenNotFound) as exc_info:
        payment_service.pay_with_checkout_token(db_session, customer, checkout.token, card)

    assert exc_info.value.status_code == 404


def test_checkout_token_of_another_user(db_session, make_user, pending_order, card):
    _, checkout = pending_order

    with pytest.raises(CheckoutTokenNotFound):
        payment_service.pay_with_checkout_token(db_session, make_user("bob"), checkout.token, card)


# --------------------------------------------------
# HTTP
# --------------------------------------------------
def test_payment_endpoints(client, customer, pending_order, card, auth_for):
    order, checkout = pending_order
    headers = auth_for(customer)

    response = client.get(f"/api/v1/payments/checkout/{checkout.token}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["id"] == order.id

    response = client.post(f"/api/v1/payments/checkout/{checkout.token}", json=card, headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["payment_details"]["masked_last4"] == "1111"
    assert data["payment_details"]["amount"] == "42.39"

    response = client.post(f"/api/v1/payments/orders/{order.id}", json=card, headers=headers)
    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "OrderNotPending"


def test_payment_endpoint_rejects_card(client, customer, pending_order, card, auth_for):
    order, _ = pending_order
    card["card_number"] = "1234"

    response = client.post(f"/api/v1/payments/orders/{order.id}", json=card, headers=auth_for(customer))

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "InvalidCardNumber"


def test_payment_endpoint_records_overlong_cvv(client, db_session, customer, pending_order, card, auth_for):
    order, _ = pending_order
    card["cvv"] = "12345678901"

    response = client.post(f"/api/v1/payments/orders/{order.id}", json=card, headers=auth_for(customer))

    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "InvalidCVV"
    failures = _entries(db_session, ActivityType.PAYMENT_FAILURE)
    assert [entry.details["error"] for entry in failures] == ["InvalidCVV"]
    db_session.refresh(order)
    assert order.status == OrderStatus.PENDING


def test_unknown_checkout_token(client, customer, auth_for):
    response = client.get("/api/v1/payments/checkout/nope", headers=auth_for(customer))

    assert response.status_code == 404
    assert response.json()["errors"][0]["code"] == "CheckoutTokenNotFound"
