"""Per-user cart store.

Every mutation first bumps ``Cart.version`` with a plain UPDATE. That write
takes the row lock (PostgreSQL) or the database write lock (SQLite), so a
second request for the same user waits until the first commits and then
re-reads the lines it left behind. Carts of different users never contend.
"""
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    InvalidQuantity,
    ItemNotInCart,
    OutOfStock,
    ProductNotFound,
)
from storefront.models.activity_log import ActivityType
from storefront.models.cart import Cart, CartItem
from storefront.services.activity_service import ActivityService
from storefront.services.catalog_service import CatalogService

logger = structlog.get_logger()


def _is_integer(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class CartService:

    @staticmethod
    def get_cart(db: Session, user) -> Cart:
        """Return the user's cart, creating an empty one on first access."""
        cart = db.query(Cart).filter(Cart.user_id == user.id).first()
        if cart is not None:
            return cart

        db.add(Cart(user_id=user.id, version=0))
        try:
            db.commit()
        except IntegrityError:
            # Created concurrently by another request for the same user
            db.rollback()
        return db.query(Cart).filter(Cart.user_id == user.id).one()

    @staticmethod
    def _lock_cart(db: Session, user) -> Cart:
        CartService.get_cart(db, user)
        db.execute(
            update(Cart)
            .where(Cart.user_id == user.id)
            .values(version=Cart.version + 1)
            .execution_options(synchronize_session=False)
        )
        return (
            db.query(Cart)
            .filter(Cart.user_id == user.id)
            .populate_existing()
            .with_for_update()
            .one()
        )

    @staticmethod
    def _locked_line(db: Session, cart: Cart, product_id: str) -> Optional[CartItem]:
        return (
            db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @staticmethod
    def add_item(
        db: Session,
        user,
        product_id: str,
        quantity=1,
        source_address: Optional[str] = None,
    ) -> Cart:
        if not _is_integer(quantity) or quantity < 1:
            raise InvalidQuantity(quantity=str(quantity))

        try:
            cart = CartService._lock_cart(db, user)

            product = CatalogService.get_product(db, product_id)
            if product is None:
                raise ProductNotFound(product_id=product_id)
            if not product.in_stock:
                raise OutOfStock(product_id=product_id)

            line = CartService._locked_line(db, cart, product_id)
            if line is not None:
                # Existing lines keep the price they were added at
                line.quantity = line.quantity + quantity
            else:
                line = CartItem(
                    cart_id=cart.id,
                    product_id=product.id,
                    title=product.title,
                    unit_price=product.price,
                    quantity=quantity,
                )
                db.add(line)

            ActivityService.record_for(
                db,
                user,
                ActivityType.ADD_TO_CART,
                {"product_id": product_id, "quantity": quantity},
                source_address,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("cart_item_added", user_id=user.id, product_id=product_id, quantity=quantity)
        return cart

    @staticmethod
    def set_quantity(
        db: Session,
        user,
        product_id: str,
        new_quantity,
        source_address: Optional[str] = None,
    ) -> Cart:
        """Set a line's quantity. Zero or less removes the line."""
        if not _is_integer(new_quantity):
            raise InvalidQuantity(quantity=str(new_quantity))

        try:
            cart = CartService._lock_cart(db, user)
            line = CartService._locked_line(db, cart, product_id)
            if line is None:
                raise ItemNotInCart(product_id=product_id)

            if new_quantity <= 0:
                CartService._delete_line(db, user, line, source_address)
            else:
                line.quantity = new_quantity
                ActivityService.record_for(
                    db,
                    user,
                    ActivityType.UPDATE_CART,
                    {"product_id": product_id, "quantity": new_quantity},
                    source_address,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("cart_item_updated", user_id=user.id, product_id=product_id, quantity=new_quantity)
        return cart

    @staticmethod
    def remove_item(
        db: Session,
        user,
        product_id: str,
        source_address: Optional[str] = None,
    ) -> Cart:
        """Remove a line. Removing a line that is not there is a silent no-op."""
        try:
            cart = CartService._lock_cart(db, user)
            line = CartService._locked_line(db, cart, product_id)
            if line is None:
                db.rollback()
                return cart

            CartService._delete_line(db, user, line, source_address)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("cart_item_removed", user_id=user.id, product_id=product_id)
        return cart

    @staticmethod
    def clear_cart(db: Session, user, source_address: Optional[str] = None) -> Cart:
        try:
            cart = CartService._lock_cart(db, user)
            removed = CartService.discard_lines(db, cart)
            ActivityService.record_for(
                db,
                user,
                ActivityType.CLEAR_CART,
                {"items_removed": removed},
                source_address,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("cart_cleared", user_id=user.id, items_removed=removed)
        return cart

    @staticmethod
    def discard_lines(db: Session, cart: Cart) -> int:
        """Delete every line of an already locked cart without committing."""
        removed = (
            db.query(CartItem)
            .filter(CartItem.cart_id == cart.id)
            .delete(synchronize_session="fetch")
        )
        db.expire(cart, ["items"])
        return removed

    @staticmethod
    def empty_for_user(db: Session, user_id: int) -> int:
        """Lock and empty a user's cart inside the caller's transaction."""
        db.execute(
            update(Cart)
            .where(Cart.user_id == user_id)
            .values(version=Cart.version + 1)
            .execution_options(synchronize_session=False)
        )
        cart = db.query(Cart).filter(Cart.user_id == user_id).with_for_update().first()
        if cart is None:
            return 0
        return CartService.discard_lines(db, cart)

    @staticmethod
    def _delete_line(db: Session, user, line: CartItem, source_address: Optional[str]) -> None:
        ActivityService.record_for(
            db,
            user,
            ActivityType.REMOVE_FROM_CART,
            {"product_id": line.product_id, "quantity": line.quantity},
            source_address,
        )
        db.delete(line)

    @staticmethod
    def subtotal(cart: Cart):
        return sum((item.line_subtotal for item in cart.items), Decimal("0.00"))
