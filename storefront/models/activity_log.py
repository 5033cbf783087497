import enum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String
from storefront.db.base_class import Base
from storefront.utils.clock import utcnow


class ActivityType(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    REGISTER = "register"
    ADD_TO_CART = "add-to-cart"
    UPDATE_CART = "update-cart"
    REMOVE_FROM_CART = "remove-from-cart"
    CLEAR_CART = "clear-cart"
    CHECKOUT = "checkout"
    PAYMENT_SUCCESS = "payment-success"
    PAYMENT_FAILURE = "payment-failure"
    CANCEL_ORDER = "cancel-order"
    ACCESS_DENIED = "access-denied"


class ActivityLog(Base):
    """Append-only audit trail. Rows are never updated or deleted."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    username = Column(String(50), nullable=False, index=True)  # Snapshot at write time
    activity_type = Column(
        Enum(ActivityType, values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        index=True,
    )
    details = Column(JSON, nullable=False, default=dict)
    source_address = Column(String(64), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
