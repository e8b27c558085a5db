from .tenancy import Business
from .catalog import Customer, Product, Service, InventoryItem
from .sales import SaleTransaction, LineItem
from .tax import TaxRate, TaxAuditRecord
from .accounting import Account, JournalEntry, JournalEntryLine
from .audit import AuditLog

__all__ = [
    'Business',
    'Customer', 'Product', 'Service', 'InventoryItem',
    'SaleTransaction', 'LineItem',
    'TaxRate', 'TaxAuditRecord',
    'Account', 'JournalEntry', 'JournalEntryLine',
    'AuditLog',
]
