from celery import Celery
from celery.schedules import crontab

from storefront.core.config import settings

celery_app = Celery(
    "storefront",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["storefront.tasks.order_tasks", "storefront.tasks.security_tasks"],
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=300,        # Hard limit (5 min)
    task_soft_time_limit=240,   # Soft limit (4 min)

    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,  # 1 hour
)

celery_app.conf.beat_schedule = {
    "expire-stale-orders-every-5-min": {
        "task": "storefront.tasks.order_tasks.expire_stale_orders",
        "schedule": crontab(minute="*/5"),
    },
    "purge-expired-checkout-tokens-hourly": {
        "task": "storefront.tasks.order_tasks.purge_expired_checkout_tokens",
        "schedule": crontab(minute=15),
    },
    "cleanup-expired-blacklisted-tokens-daily": {
        "task": "storefront.tasks.security_tasks.cleanup_expired_blacklisted_tokens",
        "schedule": crontab(hour=3, minute=0),
    },
}
