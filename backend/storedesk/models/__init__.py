from .auth import User, SessionToken
from .customers import Customer, Account
from .inventory import Product, ExchangeRate, Warehouse, StockItem, StockMovement
from .sales import Invoice, SalesOrder, SalesOrderLine, CreditNote, PaymentAttempt
from .ecommerce import EcommerceOrder, EcommerceOrderItem, AbandonedCart
from .documents import Return, ReturnLine
from .system import SystemSetting, BackgroundTask, ActivityLog

__all__ = [
    'User', 'SessionToken',
    'Customer', 'Account',
    'Product', 'ExchangeRate', 'Warehouse', 'StockItem', 'StockMovement',
    'Invoice', 'SalesOrder', 'SalesOrderLine', 'CreditNote', 'PaymentAttempt',
    'EcommerceOrder', 'EcommerceOrderItem', 'AbandonedCart',
    'Return', 'ReturnLine',
    'SystemSetting', 'BackgroundTask', 'ActivityLog',
]
