from .departments import Department
from .inventory import Product, ProductVariant, Service, StockMovement
from .sales import Sale, SaleItem, ReceiptSequence
from .credits import Credit
from .cash import Reconciliation, SuspendedRevenue, Expense
from .customers import Customer, CustomerPreference

__all__ = [
    'Department',
    'Product', 'ProductVariant', 'Service', 'StockMovement',
    'Sale', 'SaleItem', 'ReceiptSequence',
    'Credit',
    'Reconciliation', 'SuspendedRevenue', 'Expense',
    'Customer', 'CustomerPreference',
]
