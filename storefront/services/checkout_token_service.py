import secrets
from datetime import timedelta

import structlog
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import CheckoutTokenNotFound
from storefront.models.checkout_token import CheckoutToken
from storefront.models.order import Order
from storefront.utils.clock import utcnow

logger = structlog.get_logger()


class CheckoutTokenService:

    @staticmethod
    def issue(db: Session, order: Order) -> CheckoutToken:
        """Create a token for a pending order. The caller commits."""
        checkout = CheckoutToken(
            token=secrets.token_urlsafe(32),
            order_id=order.id,
            user_id=order.user_id,
            expires_at=utcnow() + timedelta(minutes=settings.CHECKOUT_TOKEN_TTL_MINUTES),
        )
        db.add(checkout)
        return checkout

    @staticmethod
    def resolve(db: Session, user, token: str) -> Order:
        """Return the order behind a live token owned by ``user``.

        Unknown, expired and foreign tokens are indistinguishable to the caller.
        """
        checkout = db.query(CheckoutToken).filter(CheckoutToken.token == token).first()
        if (
            checkout is None
            or checkout.user_id != user.id
            or checkout.expires_at <= utcnow()
        ):
            raise CheckoutTokenNotFound()
        return checkout.order

    @staticmethod
    def latest_for_order(db: Session, order_id: str):
        return (
            db.query(CheckoutToken)
            .filter(CheckoutToken.order_id == order_id)
            .order_by(CheckoutToken.expires_at.desc())
            .first()
        )

    @staticmethod
    def revoke_for_order(db: Session, order_id: str) -> int:
        return (
            db.query(CheckoutToken)
            .filter(CheckoutToken.order_id == order_id)
            .delete(synchronize_session="fetch")
        )

    @staticmethod
    def purge_expired(db: Session) -> int:
        try:
            purged = (
                db.query(CheckoutToken)
                .filter(CheckoutToken.expires_at <= utcnow())
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("checkout_tokens_purged", count=purged)
        return purged
