from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_client_address, get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.order import CheckoutResponse, OrderCreate, OrderResponse
from storefront.services.order_service import OrderService
from storefront.utils.response import dump, success

router = APIRouter()


@router.post(
    "/",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="""
Creates a pending order from the authenticated user's cart.

Behavior:
1. Prices come from the cart snapshot, not the live catalog
2. Adds 8% tax and a flat shipping charge below the free-shipping threshold
3. Returns a checkout token for the payment step
4. The cart is kept until the order is paid
5. Repeating a request with the same `idempotency_key` returns the original order
""",
    responses={
        201: {"description": "Order created"},
        400: {"description": "Empty cart or invalid customer information"},
    },
)
@limiter.limit("10/minute")
def create_order(
    request: Request,
    order_in: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order, checkout = OrderService.create_order(
        db,
        current_user,
        order_in.customer_info,
        idempotency_key=order_in.idempotency_key,
        source_address=get_client_address(request),
    )
    payload = CheckoutResponse(
        order=OrderResponse.model_validate(order),
        checkout_token=checkout.token if checkout else None,
        checkout_expires_at=checkout.expires_at if checkout else None,
    )
    return success(data=payload.model_dump(mode="json"), message="Order created")


@router.get("/", response_model=dict)
def list_my_orders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Orders of the current user, newest first"""
    orders = OrderService.list_orders(db, current_user.id)
    return success(data=dump(OrderResponse, orders))


@router.get("/{order_id}", response_model=dict)
def get_order(
    request: Request,
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = OrderService.get_order(
        db, current_user, order_id, source_address=get_client_address(request)
    )
    return success(data=dump(OrderResponse, order))


@router.post("/{order_id}/cancel", response_model=dict)
def cancel_order(
    request: Request,
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel a pending order"""
    order = OrderService.cancel_order(
        db, current_user, order_id, source_address=get_client_address(request)
    )
    return success(data=dump(OrderResponse, order), message="Order cancelled")
