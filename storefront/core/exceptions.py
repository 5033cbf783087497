"""Error taxonomy for the cart, order and payment lifecycle.

Every failure raised by a service is an ``APIError`` subclass carrying a
machine-readable ``code``. The application-level handler in ``main`` renders
them into the standard response envelope, so services never build HTTP
responses themselves.
"""
from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class StorefrontError(APIError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "InternalError"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.context = context
        error = {"code": self.code}
        if context:
            error.update(context)
        super().__init__(self.status_code, message or self.default_message, [error])


# --------------------------------------------------
# Taxonomy roots
# --------------------------------------------------
class ValidationError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ValidationError"
    default_message = "Invalid request"


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"
    default_message = "Resource not found"


class ConflictError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    code = "Conflict"
    default_message = "Request conflicts with current state"


class UpstreamError(StorefrontError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "UpstreamUnavailable"
    default_message = "A dependent service is unavailable, retry later"


class SessionError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "NotAuthenticated"
    default_message = "Not authenticated"


class PermissionDenied(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "AdminRequired"
    default_message = "Admin access required"


# --------------------------------------------------
# Cart
# --------------------------------------------------
class InvalidQuantity(ValidationError):
    code = "InvalidQuantity"
    default_message = "Quantity must be a positive integer"


class ProductNotFound(NotFoundError):
    code = "ProductNotFound"
    default_message = "Product not found"


class OutOfStock(ValidationError):
    code = "OutOfStock"
    default_message = "Product is out of stock"


class ItemNotInCart(NotFoundError):
    code = "ItemNotInCart"
    default_message = "Item not found in cart"


class CatalogUnavailable(UpstreamError):
    code = "CatalogUnavailable"
    default_message = "Catalog is unavailable, retry later"


# --------------------------------------------------
# Orders
# --------------------------------------------------
class EmptyCart(ValidationError):
    code = "EmptyCart"
    default_message = "Cart is empty"


class InvalidCustomerInfo(ValidationError):
    code = "InvalidCustomerInfo"
    default_message = "Customer information is required (name, email, address)"


class OrderNotFound(NotFoundError):
    code = "OrderNotFound"
    default_message = "Order not found"


class OrderNotPending(ConflictError):
    code = "OrderNotPending"
    default_message = "Order is no longer pending"


class CheckoutTokenNotFound(NotFoundError):
    code = "CheckoutTokenNotFound"
    default_message = "Checkout session expired or not found"


# --------------------------------------------------
# Payments
# --------------------------------------------------
class InvalidCardNumber(ValidationError):
    code = "InvalidCardNumber"
    default_message = "Invalid card number format"


class InvalidExpiry(ValidationError):
    code = "InvalidExpiry"
    default_message = "Invalid expiry date format (MM/YY)"


class InvalidCVV(ValidationError):
    code = "InvalidCVV"
    default_message = "Invalid CVV format"


# --------------------------------------------------
# Activity log / identity
# --------------------------------------------------
class InvalidActivityEntry(ValidationError):
    code = "InvalidActivityEntry"
    default_message = "Malformed activity entry"


class DuplicateAccount(ConflictError):
    code = "DuplicateAccount"
    default_message = "Username or email already registered"


class InvalidCredentials(SessionError):
    code = "InvalidCredentials"
    default_message = "Incorrect username or password"


class SessionExpired(SessionError):
    code = "SessionExpired"
    default_message = "Session expired. Please login again."


class SessionRevoked(SessionError):
    code = "SessionRevoked"
    default_message = "Session has been invalidated. Please login again."
