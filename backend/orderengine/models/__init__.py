from .catalog import Product, ProductVariant, DiningTable
from .orders import Order, OrderLine, OrderSequence
from .audit import OrderHistory, CancellationRecord, OrderEvent

__all__ = [
    'Product', 'ProductVariant', 'DiningTable',
    'Order', 'OrderLine', 'OrderSequence',
    'OrderHistory', 'CancellationRecord', 'OrderEvent',
]
