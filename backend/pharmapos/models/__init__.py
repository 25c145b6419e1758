from .auth import User, SessionToken
from .inventory import Medicine, StockMovement
from .sales import Sale, SaleItem, CreditSale, CreditPayment

__all__ = [
    'User', 'SessionToken',
    'Medicine', 'StockMovement',
    'Sale', 'SaleItem', 'CreditSale', 'CreditPayment',
]
