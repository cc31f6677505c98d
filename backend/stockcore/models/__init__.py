from .tenancy import Tenant, User
from .inventory import Product, StockMovement, StockAdjustment
from .carts import CartLine
from .orders import Order, OrderLine
from .payments import Payment
from .customers import Customer

__all__ = [
    'Tenant', 'User',
    'Product', 'StockMovement', 'StockAdjustment',
    'CartLine',
    'Order', 'OrderLine',
    'Payment',
    'Customer',
]
