from .accounts import Account, Card, Service
from .transactions import Transaction, TransactionItem, Receipt, DocumentSequence
from .cash import DenominationEntry, DrawerBalance
from .audit import AuditEntry, ImmutableRecordError

__all__ = [
    'Account', 'Card', 'Service',
    'Transaction', 'TransactionItem', 'Receipt', 'DocumentSequence',
    'DenominationEntry', 'DrawerBalance',
    'AuditEntry', 'ImmutableRecordError',
]
