from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.exceptions import CatalogUnavailable
from storefront.models.product import Product

logger = structlog.get_logger()


class CatalogService:
    """Read-only view of the product catalog used while mutating carts."""

    @staticmethod
    def get_product(db: Session, product_id: str) -> Optional[Product]:
        try:
            return db.query(Product).filter(Product.id == product_id).first()
        except SQLAlchemyError as exc:
            logger.error("catalog_lookup_failed", product_id=product_id, error=str(exc))
            raise CatalogUnavailable(product_id=product_id) from exc

    @staticmethod
    def count(db: Session) -> int:
        return db.query(Product).count()
