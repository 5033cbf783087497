from decimal import Decimal

import structlog
from slugify import slugify
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.security import hash_password
from storefront.models.product import Product
from storefront.models.user import User, UserRole

logger = structlog.get_logger(__name__)


CATALOG_SEED = [
    {
        "title": "Professional Espresso Machine",
        "description": "Commercial-grade espresso machine with dual boilers",
        "price": "299.99",
        "category": "machines",
    },
    {
        "title": "Premium Drip Coffee Maker",
        "description": "12-cup programmable drip coffee maker",
        "price": "89.99",
        "category": "machines",
    },
    {
        "title": "French Press Deluxe",
        "description": "Stainless steel double-walled French press",
        "price": "34.99",
        "category": "machines",
    },
    {
        "title": "Colombian Arabica Coffee Beans",
        "description": "Single-origin medium roast, 1lb bag",
        "price": "24.99",
        "category": "beans",
    },
    {
        "title": "Ethiopian Yirgacheffe",
        "description": "Light roast with floral and citrus notes, 1lb bag",
        "price": "28.99",
        "category": "beans",
    },
    {
        "title": "House Espresso Blend",
        "description": "Dark roast blend built for espresso, 1lb bag",
        "price": "22.99",
        "category": "beans",
    },
    {
        "title": "Artisan Ceramic Coffee Cup",
        "description": "Hand-thrown 12oz ceramic cup",
        "price": "15.99",
        "category": "accessories",
    },
    {
        "title": "Electric Milk Frother",
        "description": "Hot and cold foam in under a minute",
        "price": "45.99",
        "category": "accessories",
    },
    {
        "title": "Burr Coffee Grinder",
        "description": "Conical burr grinder with 18 grind settings",
        "price": "79.99",
        "category": "accessories",
    },
]


def seed_admin(db: Session) -> None:
    admin = db.query(User).filter(User.username == settings.DEFAULT_ADMIN_USERNAME).first()
    if admin:
        return

    seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
    if not seed_password:
        message = (
            "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
            "or create an admin user manually before launch."
        )
        if settings.ENVIRONMENT == "production":
            logger.error("admin_bootstrap_missing", env=settings.ENVIRONMENT)
            raise RuntimeError(message)
        logger.warning("admin_bootstrap_missing", env=settings.ENVIRONMENT)
        return

    db.add(
        User(
            username=settings.DEFAULT_ADMIN_USERNAME,
            email=settings.DEFAULT_ADMIN_EMAIL,
            password_hash=hash_password(seed_password),
            role=UserRole.ADMIN,
            is_active=True,
        )
    )
    logger.info("admin_user_created", username=settings.DEFAULT_ADMIN_USERNAME)


def seed_catalog(db: Session) -> int:
    """Insert the sample coffee catalog, skipping products that already exist."""
    created = 0
    for entry in CATALOG_SEED:
        product_id = slugify(entry["title"])
        if db.get(Product, product_id) is not None:
            continue
        db.add(
            Product(
                id=product_id,
                title=entry["title"],
                description=entry["description"],
                price=Decimal(entry["price"]),
                category=entry["category"],
                in_stock=True,
            )
        )
        created += 1
    if created:
        logger.info("catalog_seeded", products=created)
    return created


def init_db(db: Session) -> None:
    """Initialize database with default data"""
    seed_admin(db)
    seed_catalog(db)
    db.commit()
    logger.info("database_initialized")


if __name__ == "__main__":
    from storefront.db.session import SessionLocal
    db = SessionLocal()
    try:
        init_db(db)
    finally:
        db.close()
