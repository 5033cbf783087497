from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_client_address, get_current_user
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.schemas.order import OrderResponse
from storefront.schemas.payment import CardInput
from storefront.services import payment_service
from storefront.services.checkout_token_service import CheckoutTokenService
from storefront.utils.response import dump, success

router = APIRouter()


@router.post(
    "/orders/{order_id}",
    response_model=dict,
    summary="Pay a pending order",
    responses={
        200: {"description": "Payment processed, order completed"},
        400: {"description": "Card details rejected, order stays pending"},
        404: {"description": "Order not found"},
        409: {"description": "Order is no longer pending"},
    },
)
@limiter.limit("10/minute")
def pay_order(
    request: Request,
    order_id: str,
    card: CardInput,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = payment_service.process_payment(
        db,
        current_user,
        order_id,
        card,
        source_address=get_client_address(request),
    )
    return success(data=dump(OrderResponse, order), message="Payment processed successfully")


@router.get("/checkout/{token}", response_model=dict)
def get_checkout(
    token: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Resolve a checkout token to the order awaiting payment"""
    order = CheckoutTokenService.resolve(db, current_user, token)
    return success(data=dump(OrderResponse, order))


@router.post("/checkout/{token}", response_model=dict)
@limiter.limit("10/minute")
def pay_checkout(
    request: Request,
    token: str,
    card: CardInput,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = payment_service.pay_with_checkout_token(
        db,
        current_user,
        token,
        card,
        source_address=get_client_address(request),
    )
    return success(data=dump(OrderResponse, order), message="Payment processed successfully")
