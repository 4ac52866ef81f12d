from .users import User
from .catalog import Category, Product
from .orders import Order, OrderLine, ShipmentRecord, ShippingLog
from .wallets import SellerWallet, WalletTransaction, PayoutRequest
from .events import DomainEvent

__all__ = [
    'User',
    'Category', 'Product',
    'Order', 'OrderLine', 'ShipmentRecord', 'ShippingLog',
    'SellerWallet', 'WalletTransaction', 'PayoutRequest',
    'DomainEvent',
]
