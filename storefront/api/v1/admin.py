from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin
from storefront.db.session import get_db
from storefront.models.order import OrderStatus
from storefront.models.user import User, UserRole
from storefront.schemas.activity import ActivityLogResponse
from storefront.schemas.order import OrderResponse
from storefront.schemas.user import UserResponse
from storefront.services.activity_service import MAX_QUERY_LIMIT, ActivityService
from storefront.services.order_service import OrderService
from storefront.utils.response import dump, success

router = APIRouter()


@router.get("/activity", response_model=dict)
def list_activity(
    username_prefix: Optional[str] = Query(default=None, max_length=50),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=MAX_QUERY_LIMIT),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Activity log, newest first. Username prefix matching is case-sensitive."""
    entries = ActivityService.query(
        db,
        username_prefix=username_prefix,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return success(data=dump(ActivityLogResponse, entries), meta={"count": len(entries)})


@router.get("/orders", response_model=dict)
def list_all_orders(
    status: Optional[OrderStatus] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    orders = OrderService.list_all_orders(db, status=status)
    return success(data=dump(OrderResponse, orders), meta={"count": len(orders)})


@router.get("/stats", response_model=dict)
def get_stats(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return success(data=OrderService.get_stats(db))


@router.get("/users", response_model=dict)
def list_users(
    role: Optional[UserRole] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: registered accounts, oldest first. Password hashes never leave the server."""
    query = db.query(User)

    if role:
        query = query.filter(User.role == role)

    total = query.count()
    users = query.order_by(User.id).offset((page - 1) * limit).limit(limit).all()

    return success(
        data=dump(UserResponse, users),
        message=f"Found {total} users",
        meta={"total": total, "page": page, "limit": limit},
    )
