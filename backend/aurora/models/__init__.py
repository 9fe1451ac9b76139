from .catalog import Product
from .users import User, SessionToken
from .network import PDV
from .customers import Customer, CustomerReturn
from .inventory import StockMovement
from .sales import Sale, SaleItem, Installment
from .commissions import CommissionPayment

__all__ = [
    'Product',
    'User', 'SessionToken',
    'PDV',
    'Customer', 'CustomerReturn',
    'StockMovement',
    'Sale', 'SaleItem', 'Installment',
    'CommissionPayment',
]
