from celery import shared_task

from storefront.db.session import SessionLocal
from storefront.services.checkout_token_service import CheckoutTokenService
from storefront.services.order_service import OrderService


@shared_task(bind=True, max_retries=3)
def expire_stale_orders(self):
    """
    Cancel pending orders whose payment window has closed.
    Runs periodically via Celery Beat.
    """
    db = SessionLocal()
    try:
        return {"cancelled": OrderService.expire_stale_orders(db)}
    except Exception as exc:
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()


@shared_task(bind=True, max_retries=3)
def purge_expired_checkout_tokens(self):
    db = SessionLocal()
    try:
        return {"deleted": CheckoutTokenService.purge_expired(db)}
    except Exception as exc:
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
