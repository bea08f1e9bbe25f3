from .catalog import Product, Supplier, Customer
from .documents import DocumentSequence, Document, DocumentLine, DocumentPayment
from .ledgers import StockMovement, AccountMovement
from .accounts import AccountReceipt
from .cash import CashClosing, CashClosingLine
from .audit import AuditEvent

__all__ = [
    "Product",
    "Supplier",
    "Customer",
    "DocumentSequence",
    "Document",
    "DocumentLine",
    "DocumentPayment",
    "StockMovement",
    "AccountMovement",
    "AccountReceipt",
    "CashClosing",
    "CashClosingLine",
    "AuditEvent",
]
