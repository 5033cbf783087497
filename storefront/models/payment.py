from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from storefront.db.base_class import Base
from storefront.utils.clock import utcnow


class PaymentReceipt(Base):
    """Outcome of a simulated charge, one per completed order."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), unique=True, nullable=False)

    method = Column(String(30), default="credit-card", nullable=False)
    masked_last4 = Column(String(4), nullable=False)
    transaction_id = Column(String(100), unique=True, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)

    processed_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    order = relationship("Order", back_populates="payment")
