from .auth import User, Role, STAFF_ROLES, RefreshToken, PasswordReset, Address
from .catalog import Category, Product, ProductVariant, ProductImage, WishlistItem
from .cart import Cart, CartItem
from .orders import Order, OrderItem
from .loyalty import LoyaltyAccount, LoyaltyTransaction
from .raffles import Raffle, RaffleEntry

__all__ = [
    'User', 'Role', 'STAFF_ROLES', 'RefreshToken', 'PasswordReset', 'Address',
    'Category', 'Product', 'ProductVariant', 'ProductImage', 'WishlistItem',
    'Cart', 'CartItem',
    'Order', 'OrderItem',
    'LoyaltyAccount', 'LoyaltyTransaction',
    'Raffle', 'RaffleEntry',
]
