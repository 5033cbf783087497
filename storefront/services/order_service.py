"""Order ledger: checkout, lookups, cancellation and expiry.

Orders are created from a snapshot of the cart and leave ``pending`` exactly
once. Every status change is a compare-and-set UPDATE guarded by
``status = 'pending'``, so concurrent transitions of the same order cannot
both succeed.
"""
import random
import string
from collections.abc import Mapping
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Tuple

import pydantic
import structlog
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    EmptyCart,
    InvalidCustomerInfo,
    OrderNotFound,
    OrderNotPending,
)
from storefront.models.activity_log import ActivityType
from storefront.models.checkout_token import CheckoutToken
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.user import User
from storefront.schemas.order import CustomerInfo
from storefront.services.activity_service import ActivityService
from storefront.services.cart_service import CartService
from storefront.services.catalog_service import CatalogService
from storefront.services.checkout_token_service import CheckoutTokenService
from storefront.utils.clock import utcnow

logger = structlog.get_logger()

TAX_RATE = Decimal("0.08")
FREE_SHIPPING_THRESHOLD = Decimal("50.00")
FLAT_SHIPPING_CHARGE = Decimal("9.99")
CENT = Decimal("0.01")
ORDER_NUMBER_PREFIX = "BRW"


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_totals(line_subtotals: Iterable[Decimal]) -> dict:
    """Subtotal, 8% tax (half-up to the cent), shipping and grand total."""
    subtotal = quantize_money(sum(line_subtotals, Decimal("0")))
    tax = quantize_money(subtotal * TAX_RATE)
    shipping = Decimal("0.00") if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_CHARGE
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "total_amount": subtotal + tax + shipping,
    }


def generate_order_number(db: Session) -> str:
    """Generate a unique order number with bounded retries."""
    max_attempts = 10

    for _ in range(max_attempts):
        timestamp = utcnow().strftime("%Y%m%d")
        random_part = "".join(
            random.choices(string.ascii_uppercase + string.digits, k=8)
        )
        order_number = f"{ORDER_NUMBER_PREFIX}{timestamp}{random_part}"

        existing = db.query(Order).filter(Order.order_number == order_number).first()
        if not existing:
            return order_number

    raise ValueError("Failed to generate unique order number")


def normalize_customer_info(customer_info) -> CustomerInfo:
    if isinstance(customer_info, CustomerInfo):
        info = customer_info
    elif isinstance(customer_info, Mapping):
        try:
            info = CustomerInfo.model_validate(dict(customer_info))
        except pydantic.ValidationError as exc:
            raise InvalidCustomerInfo(
                fields=sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            ) from None
    else:
        raise InvalidCustomerInfo()

    missing = [field for field in ("name", "email", "address") if not getattr(info, field)]
    if missing:
        raise InvalidCustomerInfo(fields=missing)

    try:
        validate_email(info.email, check_deliverability=False)
    except EmailNotValidError:
        raise InvalidCustomerInfo("Customer email address is not valid", fields=["email"]) from None

    return info


class OrderService:

    @staticmethod
    def create_order(
        db: Session,
        user,
        customer_info,
        idempotency_key: Optional[str] = None,
        source_address: Optional[str] = None,
    ) -> Tuple[Order, CheckoutToken]:
        """Turn the user's cart into a pending order and a checkout token.

        The cart is left untouched; it is emptied when the order is paid.
        Repeating a call with the same ``idempotency_key`` returns the order
        created by the first call.
        """
        if idempotency_key:
            existing = OrderService._find_by_idempotency_key(db, user.id, idempotency_key)
            if existing is not None:
                return existing, OrderService._live_checkout_token(db, existing)

        cart = CartService.get_cart(db, user)
        lines = list(cart.items)
        if not lines:
            raise EmptyCart()

        info = normalize_customer_info(customer_info)
        totals = calculate_totals(line.line_subtotal for line in lines)
        now = utcnow()

        try:
            order = Order(
                order_number=generate_order_number(db),
                user_id=user.id,
                customer_name=info.name,
                customer_email=info.email,
                customer_address=info.address,
                customer_phone=info.phone or None,
                status=OrderStatus.PENDING,
                idempotency_key=idempotency_key,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.ORDER_PAYMENT_WINDOW_MINUTES),
                **totals,
            )
            for line in lines:
                order.items.append(
                    OrderItem(
                        product_id=line.product_id,
                        title=line.title,
                        unit_price=line.unit_price,
                        quantity=line.quantity,
                        line_subtotal=quantize_money(line.line_subtotal),
                    )
                )
            db.add(order)
            db.flush()

            checkout = CheckoutTokenService.issue(db, order)
            ActivityService.record_for(
                db,
                user,
                ActivityType.CHECKOUT,
                {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "total_amount": str(order.total_amount),
                },
                source_address,
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            if idempotency_key:
                # Lost the race against a retry carrying the same key
                existing = OrderService._find_by_idempotency_key(db, user.id, idempotency_key)
                if existing is not None:
                    return existing, OrderService._live_checkout_token(db, existing)
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(order)
        logger.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            user_id=user.id,
            total_amount=str(order.total_amount),
        )
        return order, checkout

    @staticmethod
    def _find_by_idempotency_key(db: Session, user_id: int, key: str) -> Optional[Order]:
        return (
            db.query(Order)
            .filter(Order.user_id == user_id, Order.idempotency_key == key)
            .first()
        )

    @staticmethod
    def _live_checkout_token(db: Session, order: Order) -> Optional[CheckoutToken]:
        if order.status != OrderStatus.PENDING:
            return None
        checkout = CheckoutTokenService.latest_for_order(db, order.id)
        if checkout is not None and checkout.expires_at > utcnow():
            return checkout
        try:
            checkout = CheckoutTokenService.issue(db, order)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return checkout

    @staticmethod
    def get_order(
        db: Session,
        user,
        order_id: str,
        source_address: Optional[str] = None,
    ) -> Order:
        """Fetch an order visible to ``user``.

        Orders owned by someone else look exactly like missing ones; the
        attempt itself is written to the activity log.
        """
        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise OrderNotFound(order_id=order_id)

        if order.user_id != user.id and not user.is_admin:
            OrderService.record_access_denied(db, user, order_id, source_address)
            raise OrderNotFound(order_id=order_id)

        return order

    @staticmethod
    def record_access_denied(db: Session, user, order_id: str, source_address: Optional[str]) -> None:
        try:
            ActivityService.record_for(
                db,
                user,
                ActivityType.ACCESS_DENIED,
                {"resource": "order", "order_id": order_id},
                source_address,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.warning("order_access_denied", order_id=order_id, user_id=user.id)

    @staticmethod
    def list_orders(db: Session, user_id: int) -> List[Order]:
        return (
            db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .all()
        )

    @staticmethod
    def transition_from_pending(db: Session, order_id: str, **values) -> bool:
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def cancel_order(
        db: Session,
        actor,
        order_id: str,
        source_address: Optional[str] = None,
    ) -> Order:
        order = OrderService.get_order(db, actor, order_id, source_address)
        if order.status != OrderStatus.PENDING:
            raise OrderNotPending(order_id=order.id, status=order.status.value)

        try:
            if not OrderService.transition_from_pending(
                db,
                order.id,
                status=OrderStatus.CANCELLED,
                cancelled_at=utcnow(),
                expires_at=None,
            ):
                raise OrderNotPending(order_id=order.id)

            CheckoutTokenService.revoke_for_order(db, order.id)
            ActivityService.record_for(
                db,
                actor,
                ActivityType.CANCEL_ORDER,
                {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "reason": "customer" if order.user_id == actor.id else "admin",
                },
                source_address,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(order)
        logger.info("order_cancelled", order_id=order.id, actor_id=actor.id)
        return order

    @staticmethod
    def expire_stale_orders(db: Session) -> int:
        """Cancel pending orders whose payment window has closed."""
        now = utcnow()
        stale: List[Order] = (
            db.query(Order)
            .filter(
                Order.status == OrderStatus.PENDING,
                Order.expires_at.isnot(None),
                Order.expires_at <= now,
            )
            .all()
        )

        cancelled_count = 0
        try:
            for order in stale:
                if not OrderService.transition_from_pending(
                    db,
                    order.id,
                    status=OrderStatus.CANCELLED,
                    cancelled_at=now,
                    expires_at=None,
                ):
                    # Paid or cancelled since the scan
                    continue

                CheckoutTokenService.revoke_for_order(db, order.id)
                ActivityService.record(
                    db,
                    user_id=order.user_id,
                    username=order.user.username,
                    activity_type=ActivityType.CANCEL_ORDER,
                    details={
                        "order_id": order.id,
                        "order_number": order.order_number,
                        "reason": "expired",
                    },
                )
                logger.info(
                    "order_expired",
                    order_id=order.id,
                    user_id=order.user_id,
                    previous_status=OrderStatus.PENDING.value,
                )
                cancelled_count += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

        return cancelled_count

    @staticmethod
    def list_all_orders(db: Session, status: Optional[OrderStatus] = None) -> List[Order]:
        q = db.query(Order)
        if status is not None:
            q = q.filter(Order.status == status)
        return q.order_by(Order.created_at.desc()).all()

    @staticmethod
    def get_stats(db: Session) -> dict:
        by_status = dict(
            db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        )
        return {
            "total_users": db.query(func.count(User.id)).scalar() or 0,
            "total_products": CatalogService.count(db),
            "total_orders": db.query(func.count(Order.id)).scalar() or 0,
            "total_activity": ActivityService.count(db),
            "orders_by_status": {
                status.value: by_status.get(status, 0) for status in OrderStatus
            },
        }
