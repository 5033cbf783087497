from storefront.models.user import User, UserRole
from storefront.models.product import Product
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.payment import PaymentReceipt
from storefront.models.activity_log import ActivityLog, ActivityType
from storefront.models.checkout_token import CheckoutToken
from storefront.models.token_blacklist import TokenBlacklist
