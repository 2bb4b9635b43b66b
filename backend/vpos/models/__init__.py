from .tenancy import Store
from .inventory import Product
from .customers import Customer, LoyaltyLedgerEntry
from .sales import Transaction, LineItem
from .compliance import AgeVerificationRecord
from .audit import AuditLogEntry

__all__ = [
    'Store',
    'Product',
    'Customer', 'LoyaltyLedgerEntry',
    'Transaction', 'LineItem',
    'AgeVerificationRecord',
    'AuditLogEntry',
]
