"""
Storage contracts for the ledger and the in-memory backend.

All reads and writes happen inside a unit of work. A unit of work commits
when its block exits normally and rolls back when the block raises, so a
failed balance adjustment never leaves a half-edited record behind and a
failed record update never leaves a moved balance behind.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import UUID

from .errors import ConflictError, InsufficientFundsError, NotFoundError
from .models import (
    Account,
    AccountMovement,
    LedgerRecord,
    LedgerStatus,
    RecordKind,
)


class UnitOfWork(ABC):
    """Operations available inside one atomic storage transaction."""

    @abstractmethod
    def add_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    def get_account(self, account_id: UUID, community_id: Optional[UUID] = None) -> Optional[Account]:
        """Return the account, or None if missing or owned by another community."""
        pass

    @abstractmethod
    def list_accounts(self, community_id: UUID) -> list[Account]:
        pass

    @abstractmethod
    def conditional_adjust(
        self,
        account_id: UUID,
        delta: Decimal,
        required_minimum_after: Optional[Decimal] = None,
    ) -> Account:
        """
        Add ``delta`` to the account balance as one indivisible step.

        Raises:
            NotFoundError: If the account does not exist.
            InsufficientFundsError: If ``balance + delta`` would fall below
                ``required_minimum_after``. The balance is left untouched.
        """
        pass

    @abstractmethod
    def add_record(self, record: LedgerRecord) -> LedgerRecord:
        pass

    @abstractmethod
    def get_record(self, kind: RecordKind, record_id: UUID, community_id: UUID) -> Optional[LedgerRecord]:
        """Fetch a record whose account belongs to ``community_id``."""
        pass

    @abstractmethod
    def list_records(
        self,
        kind: RecordKind,
        community_id: UUID,
        status: Optional[LedgerStatus] = None,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerRecord]:
        pass

    @abstractmethod
    def update_record(
        self,
        kind: RecordKind,
        record_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
    ) -> LedgerRecord:
        """
        Apply ``changes`` only if the stored version still equals
        ``expected_version``; the version is bumped on success.

        Raises:
            ConflictError: If the record changed since it was read.
        """
        pass

    @abstractmethod
    def add_movement(self, movement: AccountMovement) -> AccountMovement:
        pass

    @abstractmethod
    def list_movements(self, account_id: UUID) -> list[AccountMovement]:
        pass


class LedgerStorage(ABC):
    @abstractmethod
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        pass


def _copy(model):
    return model.model_copy(deep=True)


class InMemoryUnitOfWork(UnitOfWork):
    """Stored models never leave the store; callers get deep copies."""

    def __init__(self, storage: "InMemoryStorage"):
        self.storage = storage

    def add_account(self, account: Account) -> Account:
        self.storage.accounts[account.id] = _copy(account)
        return account

    def get_account(self, account_id: UUID, community_id: Optional[UUID] = None) -> Optional[Account]:
        account = self.storage.accounts.get(account_id)
        if account is None:
            return None
        if community_id is not None and account.community_id != community_id:
            return None
        return _copy(account)

    def list_accounts(self, community_id: UUID) -> list[Account]:
        return [_copy(a) for a in self.storage.accounts.values() if a.community_id == community_id]

    def conditional_adjust(
        self,
        account_id: UUID,
        delta: Decimal,
        required_minimum_after: Optional[Decimal] = None,
    ) -> Account:
        account = self.storage.accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")

        new_balance = account.balance + delta
        if required_minimum_after is not None and new_balance < required_minimum_after:
            raise InsufficientFundsError(
                f"Account {account_id} has {account.balance}, cannot apply {delta}"
            )

        updated = account.model_copy(update={"balance": new_balance})
        self.storage.accounts[account_id] = updated
        return _copy(updated)

    def add_record(self, record: LedgerRecord) -> LedgerRecord:
        self.storage.records[record.kind][record.id] = _copy(record)
        return record

    def get_record(self, kind: RecordKind, record_id: UUID, community_id: UUID) -> Optional[LedgerRecord]:
        record = self.storage.records[kind].get(record_id)
        if record is None or self.get_account(record.account_id, community_id) is None:
            return None
        return _copy(record)

    def list_records(
        self,
        kind: RecordKind,
        community_id: UUID,
        status: Optional[LedgerStatus] = None,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerRecord]:
        community_accounts = {a.id for a in self.list_accounts(community_id)}
        records = [
            _copy(r) for r in reversed(list(self.storage.records[kind].values()))
            if r.account_id in community_accounts
            and (status is None or r.status == status)
            and (account_id is None or r.account_id == account_id)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def update_record(
        self,
        kind: RecordKind,
        record_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
    ) -> LedgerRecord:
        current = self.storage.records[kind].get(record_id)
        if current is None:
            raise NotFoundError(f"{kind.value.capitalize()} {record_id} not found")
        if current.version != expected_version:
            raise ConflictError(
                f"{kind.value.capitalize()} {record_id} is at version {current.version}, expected {expected_version}"
            )

        updated = current.model_copy(update={**changes, "version": expected_version + 1})
        self.storage.records[kind][record_id] = updated
        return _copy(updated)

    def add_movement(self, movement: AccountMovement) -> AccountMovement:
        self.storage.movements.append(_copy(movement))
        return movement

    def list_movements(self, account_id: UUID) -> list[AccountMovement]:
        return [_copy(m) for m in self.storage.movements if m.account_id == account_id]


class InMemoryStorage(LedgerStorage):
    """
    Process-local storage.

    One re-entrant lock is held for the whole unit of work, which makes every
    unit of work serializable. Rollback restores the tables captured when the
    unit of work started. Stored models are replaced, never mutated in
    place, so shallow copies of the tables are enough.
    """

    def __init__(self):
        self.accounts: dict[UUID, Account] = {}
        self.records: dict[RecordKind, dict[UUID, LedgerRecord]] = {kind: {} for kind in RecordKind}
        self.movements: list[AccountMovement] = []
        self._lock = threading.RLock()

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield InMemoryUnitOfWork(self)
            except BaseException:
                self._restore(snapshot)
                raise

    def _snapshot(self) -> tuple:
        return (
            dict(self.accounts),
            {kind: dict(table) for kind, table in self.records.items()},
            list(self.movements),
        )

    def _restore(self, snapshot: tuple) -> None:
        self.accounts, self.records, self.movements = snapshot
