"""Simulated card payment.

Nothing leaves the process: a card that passes the format checks is treated
as charged and a receipt with a fresh transaction id is attached to the order.
"""
import re
import uuid
from collections.abc import Mapping
from typing import Optional

import pydantic
import structlog
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    InvalidCardNumber,
    InvalidCVV,
    InvalidExpiry,
    OrderNotFound,
    OrderNotPending,
    ValidationError,
)
from storefront.models.activity_log import ActivityType
from storefront.models.order import Order, OrderStatus
from storefront.models.payment import PaymentReceipt
from storefront.schemas.payment import CardInput
from storefront.services.activity_service import ActivityService
from storefront.services.cart_service import CartService
from storefront.services.checkout_token_service import CheckoutTokenService
from storefront.services.order_service import OrderService
from storefront.utils.clock import utcnow

logger = structlog.get_logger()

PAYMENT_METHOD = "credit-card"
CARD_NUMBER_PATTERN = re.compile(r"^[0-9]{13,19}$")
EXPIRY_PATTERN = re.compile(r"^([0-9]{2})/([0-9]{2})$")
CVV_PATTERN = re.compile(r"^[0-9]{3,4}$")


def _card_fields(card_input) -> CardInput:
    if isinstance(card_input, CardInput):
        return card_input
    if isinstance(card_input, Mapping):
        try:
            return CardInput.model_validate(dict(card_input))
        except pydantic.ValidationError:
            raise InvalidCardNumber() from None
    raise InvalidCardNumber()


def validate_card(card: CardInput) -> str:
    """Check card-shaped input and return the normalized card number.

    Expiry dates in the past are accepted; only the MM/YY shape is checked.
    """
    digits = re.sub(r"\s", "", card.card_number or "")
    if not CARD_NUMBER_PATTERN.match(digits):
        raise InvalidCardNumber()

    match = EXPIRY_PATTERN.match((card.expiry or "").strip())
    if not match or not 1 <= int(match.group(1)) <= 12:
        raise InvalidExpiry()

    if not CVV_PATTERN.match((card.cvv or "").strip()):
        raise InvalidCVV()

    return digits


def generate_transaction_id() -> str:
    return f"tx_{uuid.uuid4().hex}"


def _load_owned_order(db: Session, user, order_id: str, source_address: Optional[str]) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(order_id=order_id)
    if order.user_id != user.id:
        OrderService.record_access_denied(db, user, order_id, source_address)
        raise OrderNotFound(order_id=order_id)
    return order


def _record_failure(db: Session, user, order: Order, error: ValidationError, source_address: Optional[str]) -> None:
    try:
        ActivityService.record_for(
            db,
            user,
            ActivityType.PAYMENT_FAILURE,
            {"order_id": order.id, "order_number": order.order_number, "error": error.code},
            source_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.warning("payment_failed", order_id=order.id, user_id=user.id, error=error.code)


def process_payment(
    db: Session,
    user,
    order_id: str,
    card_input,
    source_address: Optional[str] = None,
) -> Order:
    """Charge a pending order owned by ``user``.

    Invalid card input leaves the order pending so the shopper can retry.
    On success the order completes, the receipt is attached and the owner's
    cart is emptied, all in one transaction.
    """
    order = _load_owned_order(db, user, order_id, source_address)

    if order.status != OrderStatus.PENDING:
        raise OrderNotPending(order_id=order.id, status=order.status.value)

    try:
        card_number = validate_card(_card_fields(card_input))
    except ValidationError as exc:
        _record_failure(db, user, order, exc, source_address)
        raise

    now = utcnow()
    transaction_id = generate_transaction_id()
    try:
        if not OrderService.transition_from_pending(
            db,
            order.id,
            status=OrderStatus.COMPLETED,
            completed_at=now,
            expires_at=None,
        ):
            raise OrderNotPending(order_id=order.id)

        db.add(
            PaymentReceipt(
                order_id=order.id,
                method=PAYMENT_METHOD,
                masked_last4=card_number[-4:],
                transaction_id=transaction_id,
                amount=order.total_amount,
                processed_at=now,
            )
        )
        items_cleared = CartService.empty_for_user(db, order.user_id)
        CheckoutTokenService.revoke_for_order(db, order.id)
        ActivityService.record_for(
            db,
            user,
            ActivityType.PAYMENT_SUCCESS,
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "transaction_id": transaction_id,
                "amount": str(order.total_amount),
            },
            source_address,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "payment_succeeded",
        order_id=order.id,
        user_id=user.id,
        transaction_id=transaction_id,
        cart_items_cleared=items_cleared,
    )
    return order


def pay_with_checkout_token(
    db: Session,
    user,
    token: str,
    card_input,
    source_address: Optional[str] = None,
) -> Order:
    order = CheckoutTokenService.resolve(db, user, token)
    return process_payment(db, user, order.id, card_input, source_address)
