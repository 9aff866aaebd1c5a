from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from . import policy
from .config import LedgerSettings
from .errors import (
    AmountLockedError,
    ConflictError,
    InsufficientFundsError,
    LedgerServiceError,
    NotFoundError,
)
from .logs import get_logger
from .models import (
    RECORD_MODELS,
    Account,
    AccountMovement,
    AccountReconciliation,
    Cashout,
    EditCashout,
    EditPayment,
    LedgerRecord,
    LedgerStatus,
    NewAccount,
    NewCashout,
    NewPayment,
    Payment,
    RecordKind,
)
from .sql_storage import SqlStorage
from .storage import InMemoryStorage, LedgerStorage, UnitOfWork

__all__ = [
    "LedgerService",
    "LedgerServiceError",
    "NotFoundError",
    "InsufficientFundsError",
    "ConflictError",
    "AmountLockedError",
    "build_storage",
]

log = get_logger(__name__)

# Edit fields that cannot be cleared; an explicit null leaves them as they are.
_NON_NULLABLE_FIELDS = {
    "amount", "status", "title", "description", "register_date", "is_email_sent", "expense_ids",
}


def _label(kind: RecordKind) -> str:
    return kind.value.capitalize()


def build_storage(settings: LedgerSettings) -> LedgerStorage:
    if settings.database_url:
        return SqlStorage.from_url(settings.database_url, echo=settings.sql_echo)
    return InMemoryStorage()


class LedgerService:
    def __init__(self, storage: Optional[LedgerStorage] = None):
        self.storage = storage or InMemoryStorage()

    # Accounts

    def create_account(self, community_id: UUID, request: NewAccount) -> Account:
        account = Account(
            id=uuid4(),
            community_id=community_id,
            balance=Decimal("0.00"),
            created_at=datetime.now(timezone.utc),
            **request.model_dump(),
        )
        with self.storage.unit_of_work() as uow:
            uow.add_account(account)
        log.info("account_created", account_id=str(account.id), community_id=str(community_id))
        return account

    def get_account(self, account_id: UUID, community_id: UUID) -> Account:
        with self.storage.unit_of_work() as uow:
            return self._require_account(uow, account_id, community_id)

    def list_accounts(self, community_id: UUID) -> list[Account]:
        with self.storage.unit_of_work() as uow:
            return uow.list_accounts(community_id)

    def get_account_movements(self, account_id: UUID, community_id: UUID) -> list[AccountMovement]:
        with self.storage.unit_of_work() as uow:
            self._require_account(uow, account_id, community_id)
            return uow.list_movements(account_id)

    def reconcile_account(self, account_id: UUID, community_id: UUID) -> AccountReconciliation:
        """
        Recompute the balance from Paid records and compare it with the
        stored one. Both reads share one unit of work, so the report is a
        consistent snapshot.
        """
        with self.storage.unit_of_work() as uow:
            account = self._require_account(uow, account_id, community_id)
            payments = uow.list_records(RecordKind.PAYMENT, community_id, LedgerStatus.PAID, account_id)
            cashouts = uow.list_records(RecordKind.CASHOUT, community_id, LedgerStatus.PAID, account_id)

        paid_in = sum((p.amount for p in payments), Decimal("0.00"))
        paid_out = sum((c.amount for c in cashouts), Decimal("0.00"))
        expected = paid_in - paid_out
        report = AccountReconciliation(
            account_id=account_id,
            balance=account.balance,
            expected_balance=expected,
            paid_payments_total=paid_in,
            paid_cashouts_total=paid_out,
            is_consistent=account.balance == expected,
        )
        if not report.is_consistent:
            log.error("account_out_of_balance", account_id=str(account_id),
                      balance=str(account.balance), expected_balance=str(expected))
        return report

    # Payments

    def create_payment(self, community_id: UUID, request: NewPayment) -> Payment:
        return self._create_record(RecordKind.PAYMENT, community_id, request)

    def edit_payment(self, payment_id: UUID, community_id: UUID, request: EditPayment) -> Payment:
        return self._edit_record(RecordKind.PAYMENT, payment_id, community_id, request)

    def get_payment(self, payment_id: UUID, community_id: UUID) -> Payment:
        return self._get_record(RecordKind.PAYMENT, payment_id, community_id)

    def get_all_payments(
        self,
        community_id: UUID,
        status: Optional[LedgerStatus] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Payment]:
        with self.storage.unit_of_work() as uow:
            return uow.list_records(RecordKind.PAYMENT, community_id, status, account_id)

    # Cashouts

    def create_cashout(self, community_id: UUID, request: NewCashout) -> Cashout:
        return self._create_record(RecordKind.CASHOUT, community_id, request)

    def edit_cashout(self, cashout_id: UUID, community_id: UUID, request: EditCashout) -> Cashout:
        return self._edit_record(RecordKind.CASHOUT, cashout_id, community_id, request)

    def get_cashout(self, cashout_id: UUID, community_id: UUID) -> Cashout:
        return self._get_record(RecordKind.CASHOUT, cashout_id, community_id)

    def get_all_cashouts(
        self,
        community_id: UUID,
        status: Optional[LedgerStatus] = None,
        account_id: Optional[UUID] = None,
    ) -> list[Cashout]:
        with self.storage.unit_of_work() as uow:
            return uow.list_records(RecordKind.CASHOUT, community_id, status, account_id)

    # Shared record lifecycle

    def _create_record(
        self,
        kind: RecordKind,
        community_id: UUID,
        request: Union[NewPayment, NewCashout],
    ) -> LedgerRecord:
        now = datetime.now(timezone.utc)
        data = request.model_dump()
        register_date = data.pop("register_date") or now
        record = RECORD_MODELS[kind](
            id=uuid4(), register_date=register_date, created_at=now, updated_at=now, **data,
        )

        with self.storage.unit_of_work() as uow:
            self._require_account(uow, record.account_id, community_id)
            # creation is a transition out of an implicit Pending
            delta = policy.resolve(kind, LedgerStatus.PENDING, record.status, record.amount)
            if delta is not None:
                self._apply_delta(uow, kind, record.id, record.account_id, delta)
            uow.add_record(record)

        log.info(f"{kind.value}_created", record_id=str(record.id), account_id=str(record.account_id),
                 amount=str(record.amount), status=record.status.value)
        return record

    def _edit_record(
        self,
        kind: RecordKind,
        record_id: UUID,
        community_id: UUID,
        request: Union[EditPayment, EditCashout],
    ) -> LedgerRecord:
        changes = {
            key: value
            for key, value in request.model_dump(exclude_unset=True, exclude={"expected_version"}).items()
            if not (value is None and key in _NON_NULLABLE_FIELDS)
        }

        try:
            with self.storage.unit_of_work() as uow:
                existing = uow.get_record(kind, record_id, community_id)
                if existing is None:
                    raise NotFoundError(f"{_label(kind)} {record_id} not found")
                if request.expected_version is not None and request.expected_version != existing.version:
                    raise ConflictError(
                        f"{_label(kind)} {record_id} is at version {existing.version}, "
                        f"expected {request.expected_version}"
                    )

                next_status = changes.get("status", existing.status)
                new_amount = changes.get("amount", existing.amount)
                if policy.amount_is_locked(existing.status, next_status, existing.amount, new_amount):
                    raise AmountLockedError(
                        f"{_label(kind)} {record_id} is Paid; move it back to Pending before changing its amount"
                    )

                amount = policy.effective_amount(existing.status, next_status, existing.amount, new_amount)
                delta = policy.resolve(kind, existing.status, next_status, amount)
                if delta is not None:
                    self._apply_delta(uow, kind, record_id, existing.account_id, delta)

                changes["updated_at"] = datetime.now(timezone.utc)
                updated = uow.update_record(kind, record_id, existing.version, changes)
        except ConflictError as e:
            log.warning("edit_conflict", kind=kind.value, record_id=str(record_id), error=str(e))
            raise

        log.info(f"{kind.value}_edited", record_id=str(record_id), previous_status=existing.status.value,
                 status=updated.status.value, version=updated.version)
        return updated

    def _get_record(self, kind: RecordKind, record_id: UUID, community_id: UUID) -> LedgerRecord:
        with self.storage.unit_of_work() as uow:
            record = uow.get_record(kind, record_id, community_id)
        if record is None:
            raise NotFoundError(f"{_label(kind)} {record_id} not found")
        return record

    def _apply_delta(
        self,
        uow: UnitOfWork,
        kind: RecordKind,
        record_id: UUID,
        account_id: UUID,
        delta: policy.BalanceDelta,
    ) -> Account:
        try:
            account = uow.conditional_adjust(account_id, delta.amount, delta.required_minimum_after)
        except InsufficientFundsError:
            log.warning("insufficient_funds", kind=kind.value, record_id=str(record_id),
                        account_id=str(account_id), amount=str(delta.amount))
            raise

        uow.add_movement(AccountMovement(
            id=uuid4(),
            account_id=account_id,
            record_kind=kind,
            record_id=record_id,
            amount=delta.amount,
            balance_after=account.balance,
            created_at=datetime.now(timezone.utc),
        ))
        log.info("balance_adjusted", account_id=str(account_id), kind=kind.value,
                 record_id=str(record_id), delta=str(delta.amount), balance=str(account.balance))
        return account

    def _require_account(self, uow: UnitOfWork, account_id: UUID, community_id: UUID) -> Account:
        account = uow.get_account(account_id, community_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account
