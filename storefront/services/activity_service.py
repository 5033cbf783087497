"""Append-only activity log.

Entries are added to the caller's session and committed together with the
mutation they describe, so an entry exists if and only if its mutation does.
"""
from collections.abc import Mapping
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.core.exceptions import InvalidActivityEntry
from storefront.models.activity_log import ActivityLog, ActivityType
from storefront.utils.clock import to_naive_utc, utcnow

logger = structlog.get_logger()

MAX_QUERY_LIMIT = 1000


class ActivityService:

    @staticmethod
    def record(
        db: Session,
        *,
        user_id: Optional[int],
        username: Optional[str],
        activity_type,
        details: Optional[Mapping] = None,
        source_address: Optional[str] = None,
    ) -> ActivityLog:
        if user_id is None or not username:
            raise InvalidActivityEntry("Activity entry requires a user id and username")

        try:
            kind = ActivityType(activity_type)
        except ValueError:
            raise InvalidActivityEntry(
                "Unknown activity type", activity_type=str(activity_type)
            ) from None

        if details is None:
            details = {}
        if not isinstance(details, Mapping):
            raise InvalidActivityEntry("Activity details must be a mapping")

        entry = ActivityLog(
            user_id=user_id,
            username=username,
            activity_type=kind,
            details=dict(details),
            source_address=source_address,
            timestamp=utcnow(),
        )
        db.add(entry)
        logger.debug("activity_recorded", user_id=user_id, activity_type=kind.value)
        return entry

    @staticmethod
    def record_for(
        db: Session,
        user,
        activity_type,
        details: Optional[Mapping] = None,
        source_address: Optional[str] = None,
    ) -> ActivityLog:
        """Shortcut for the common case of logging on behalf of a loaded user."""
        return ActivityService.record(
            db,
            user_id=getattr(user, "id", None),
            username=getattr(user, "username", None),
            activity_type=activity_type,
            details=details,
            source_address=source_address,
        )

    @staticmethod
    def query(
        db: Session,
        username_prefix: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ActivityLog]:
        """Newest-first entries, filtered by a case-sensitive username prefix
        and an inclusive time range. Omitted filters are unbounded."""
        q = db.query(ActivityLog)

        if username_prefix:
            # substr comparison keeps the match case-sensitive on every backend
            q = q.filter(
                func.substr(ActivityLog.username, 1, len(username_prefix)) == username_prefix
            )

        date_from = to_naive_utc(date_from)
        date_to = to_naive_utc(date_to)
        if date_from is not None:
            q = q.filter(ActivityLog.timestamp >= date_from)
        if date_to is not None:
            q = q.filter(ActivityLog.timestamp <= date_to)

        q = q.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())

        if limit is not None:
            q = q.limit(max(0, min(int(limit), MAX_QUERY_LIMIT)))

        return q.all()

    @staticmethod
    def count(db: Session) -> int:
        return db.query(func.count(ActivityLog.id)).scalar() or 0
