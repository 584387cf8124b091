from .tenancy import Organization, Outlet
from .catalog import Product
from .documents import DocumentSequence
from .ledger import LedgerEntry, MovementLogEntry, StockTransfer, StockReservation
from .sales import Sale, SaleLine
from .damage import DamageReport, RepairAction, ScrapAction

__all__ = [
    'Organization', 'Outlet',
    'Product',
    'DocumentSequence',
    'LedgerEntry', 'MovementLogEntry', 'StockTransfer', 'StockReservation',
    'Sale', 'SaleLine',
    'DamageReport', 'RepairAction', 'ScrapAction',
]
