from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_client_address, get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.cart import Cart
from storefront.models.user import User
from storefront.schemas.cart import CartItemCreate, CartItemResponse, CartItemUpdate, CartResponse
from storefront.services.cart_service import CartService
from storefront.utils.response import success

router = APIRouter()


def _cart_payload(cart: Cart) -> dict:
    return CartResponse(
        items=[CartItemResponse.model_validate(item) for item in cart.items],
        subtotal=CartService.subtotal(cart),
        total_items=len(cart.items),
    ).model_dump(mode="json")


@router.get("/", response_model=dict)
def get_cart(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get user's cart"""
    cart = CartService.get_cart(db, current_user)
    return success(data=_cart_payload(cart))


@router.post("/items", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_to_cart(
    request: Request,
    cart_item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add a product to the cart, or increase the quantity of an existing line"""
    cart = CartService.add_item(
        db,
        current_user,
        cart_item.product_id,
        cart_item.quantity,
        source_address=get_client_address(request),
    )
    return success(data=_cart_payload(cart), message="Item added to cart")


@router.put("/items/{product_id}")
def update_cart_item(
    request: Request,
    product_id: str,
    update_data: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set a line's quantity; zero or less removes the line"""
    cart = CartService.set_quantity(
        db,
        current_user,
        product_id,
        update_data.quantity,
        source_address=get_client_address(request),
    )
    return success(data=_cart_payload(cart), message="Cart updated")


@router.delete("/items/{product_id}")
def remove_from_cart(
    request: Request,
    product_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove item from cart"""
    cart = CartService.remove_item(
        db,
        current_user,
        product_id,
        source_address=get_client_address(request),
    )
    return success(data=_cart_payload(cart), message="Item removed from cart")


@router.delete("/")
def clear_cart(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Clear entire cart"""
    cart = CartService.clear_cart(db, current_user, source_address=get_client_address(request))
    return success(data=_cart_payload(cart), message="Cart cleared")
