from celery import shared_task

from storefront.db.session import SessionLocal
from storefront.models.token_blacklist import TokenBlacklist
from storefront.utils.clock import utcnow


def purge_blacklisted_tokens(db) -> int:
    deleted = (
        db.query(TokenBlacklist)
        .filter(TokenBlacklist.expires_at < utcnow())
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


@shared_task(bind=True, max_retries=3)
def cleanup_expired_blacklisted_tokens(self):
    """Delete expired token blacklist rows to keep the table bounded."""
    db = SessionLocal()
    try:
        return {"deleted": purge_blacklisted_tokens(db)}
    except Exception as exc:
        db.rollback()
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
