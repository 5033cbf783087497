from sqlalchemy import Boolean, Column, String, Text, Numeric, DateTime
from storefront.db.base_class import Base
from storefront.utils.clock import utcnow


class Product(Base):
    """Catalog entry. The checkout core only ever reads these rows."""

    __tablename__ = "products"

    id = Column(String(100), primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(50), nullable=True, index=True)
    in_stock = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
