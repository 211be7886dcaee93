from .inventory import Product, LedgerEntry, ImmutableLedgerError, ADJUSTMENT_REASONS, REASON_LABELS
from .transactions import Transaction, TransactionLine, TRANSACTION_KINDS
from .system import SchemaMigration

__all__ = [
    'Product', 'LedgerEntry', 'ImmutableLedgerError', 'ADJUSTMENT_REASONS', 'REASON_LABELS',
    'Transaction', 'TransactionLine', 'TRANSACTION_KINDS',
    'SchemaMigration',
]
