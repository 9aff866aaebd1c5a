"""
Community Ledger

Keeps each community account's balance in step with the Payments and
Cashouts recorded against it:
- Pending → Paid on a Payment credits the account, Paid → Pending undoes it
- Pending → Paid on a Cashout debits the account only if funds suffice
- Every applied delta is journaled as an account movement
- In-memory and SQLAlchemy storage behind one unit-of-work contract
"""

from .errors import (
    AmountLockedError,
    ConflictError,
    InsufficientFundsError,
    LedgerServiceError,
    NotFoundError,
)
from .models import (
    Account,
    AccountMovement,
    AccountReconciliation,
    Cashout,
    EditCashout,
    EditPayment,
    LedgerStatus,
    NewAccount,
    NewCashout,
    NewPayment,
    Payment,
    RecordKind,
)
from .service import LedgerService
from .sql_storage import SqlStorage
from .storage import InMemoryStorage

__all__ = [
    "LedgerStatus",
    "RecordKind",
    "Account",
    "AccountMovement",
    "AccountReconciliation",
    "Payment",
    "Cashout",
    "NewAccount",
    "NewPayment",
    "EditPayment",
    "NewCashout",
    "EditCashout",
    "LedgerService",
    "InMemoryStorage",
    "SqlStorage",
    "LedgerServiceError",
    "NotFoundError",
    "InsufficientFundsError",
    "ConflictError",
    "AmountLockedError",
]
