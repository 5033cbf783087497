from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from storefront.db.base_class import Base
from storefront.utils.clock import utcnow


class CheckoutToken(Base):
    """Short-lived handle that carries a pending order into the payment page."""

    __tablename__ = "checkout_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="checkout_tokens")
