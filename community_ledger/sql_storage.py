"""
SQLAlchemy-backed storage.

Balance changes are a single guarded UPDATE so the database, not the
application, decides whether two concurrent debits fit in the balance:

    UPDATE accounts SET balance = round(balance + :delta, 2)
    WHERE id = :id AND round(balance + :delta, 2) >= :floor

Record edits are guarded the same way on the ``version`` column.

SQLite keeps NUMERIC values as binary floats, so the sum is rounded to cents
inside the statement. It also has a single writer, and an in-memory database
lives on one shared connection, so units of work on SQLite engines are
serialized with a lock.
"""

import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional
from uuid import UUID

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    create_engine, func, select, update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, declared_attr, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConflictError, InsufficientFundsError, NotFoundError
from .models import (
    RECORD_MODELS,
    Account,
    AccountMovement,
    LedgerRecord,
    LedgerStatus,
    RecordKind,
)
from .storage import LedgerStorage, UnitOfWork

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRow(Base):
    __tablename__ = "accounts"
    id = Column(Uuid, primary_key=True)
    community_id = Column(Uuid, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    active = Column(Boolean, nullable=False, default=True)
    balance = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RecordColumns:
    id = Column(Uuid, primary_key=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(16), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    register_date = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @declared_attr
    def account_id(cls):
        return Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)


class PaymentRow(RecordColumns, Base):
    __tablename__ = "payments"
    owner_id = Column(Uuid, nullable=True)
    created_by = Column(Uuid, nullable=True)
    voucher_image = Column(String(500), nullable=True)
    is_email_sent = Column(Boolean, nullable=False, default=False)
    expense_ids = Column(JSON, nullable=False, default=list)


class CashoutRow(RecordColumns, Base):
    __tablename__ = "cashouts"
    provider_id = Column(Uuid, nullable=True)
    bill_image = Column(String(500), nullable=True)


class MovementRow(Base):
    __tablename__ = "account_movements"
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(Uuid, nullable=False, unique=True)
    account_id = Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    record_kind = Column(String(16), nullable=False)
    record_id = Column(Uuid, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


RECORD_TABLES = {
    RecordKind.PAYMENT: PaymentRow,
    RecordKind.CASHOUT: CashoutRow,
}


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    columns = {}
    for key, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif key == "expense_ids" and value is not None:
            value = [str(v) for v in value]
        columns[key] = value
    return columns


class SqlUnitOfWork(UnitOfWork):
    def __init__(self, session: Session):
        self.session = session

    def _fetch(self, stmt):
        return self.session.execute(stmt.execution_options(populate_existing=True)).scalars()

    def add_account(self, account: Account) -> Account:
        self.session.add(AccountRow(**account.model_dump()))
        self.session.flush()
        return account

    def get_account(self, account_id: UUID, community_id: Optional[UUID] = None) -> Optional[Account]:
        stmt = select(AccountRow).where(AccountRow.id == account_id)
        if community_id is not None:
            stmt = stmt.where(AccountRow.community_id == community_id)
        row = self._fetch(stmt).one_or_none()
        return Account.model_validate(row) if row is not None else None

    def list_accounts(self, community_id: UUID) -> list[Account]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.community_id == community_id)
            .order_by(AccountRow.created_at)
        )
        return [Account.model_validate(row) for row in self._fetch(stmt)]

    def conditional_adjust(
        self,
        account_id: UUID,
        delta: Decimal,
        required_minimum_after: Optional[Decimal] = None,
    ) -> Account:
        new_balance = func.round(AccountRow.balance + delta, 2, type_=AccountRow.balance.type)
        stmt = update(AccountRow).where(AccountRow.id == account_id)
        if required_minimum_after is not None:
            stmt = stmt.where(new_balance >= required_minimum_after)
        stmt = stmt.values(balance=new_balance).execution_options(synchronize_session=False)

        result = self.session.execute(stmt)
        account = self.get_account(account_id)
        if result.rowcount == 0:
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            raise InsufficientFundsError(
                f"Account {account_id} has {account.balance}, cannot apply {delta}"
            )
        return account

    def add_record(self, record: LedgerRecord) -> LedgerRecord:
        table = RECORD_TABLES[record.kind]
        self.session.add(table(**_to_columns(record.model_dump())))
        self.session.flush()
        return record

    def get_record(self, kind: RecordKind, record_id: UUID, community_id: UUID) -> Optional[LedgerRecord]:
        table = RECORD_TABLES[kind]
        stmt = (
            select(table)
            .join(AccountRow, table.account_id == AccountRow.id)
            .where(table.id == record_id, AccountRow.community_id == community_id)
        )
        row = self._fetch(stmt).one_or_none()
        return RECORD_MODELS[kind].model_validate(row) if row is not None else None

    def list_records(
        self,
        kind: RecordKind,
        community_id: UUID,
        status: Optional[LedgerStatus] = None,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerRecord]:
        table = RECORD_TABLES[kind]
        stmt = (
            select(table)
            .join(AccountRow, table.account_id == AccountRow.id)
            .where(AccountRow.community_id == community_id)
            .order_by(table.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(table.status == status.value)
        if account_id is not None:
            stmt = stmt.where(table.account_id == account_id)
        model = RECORD_MODELS[kind]
        return [model.model_validate(row) for row in self._fetch(stmt)]

    def update_record(
        self,
        kind: RecordKind,
        record_id: UUID,
        expected_version: int,
        changes: dict[str, Any],
    ) -> LedgerRecord:
        table = RECORD_TABLES[kind]
        stmt = (
            update(table)
            .where(table.id == record_id, table.version == expected_version)
            .values(**_to_columns(changes), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        row = self._fetch(select(table).where(table.id == record_id)).one_or_none()
        if row is None:
            raise NotFoundError(f"{kind.value.capitalize()} {record_id} not found")
        if result.rowcount == 0:
            raise ConflictError(
                f"{kind.value.capitalize()} {record_id} is at version {row.version}, expected {expected_version}"
            )
        return RECORD_MODELS[kind].model_validate(row)

    def add_movement(self, movement: AccountMovement) -> AccountMovement:
        self.session.add(MovementRow(**_to_columns(movement.model_dump())))
        self.session.flush()
        return movement

    def list_movements(self, account_id: UUID) -> list[AccountMovement]:
        stmt = (
            select(MovementRow)
            .where(MovementRow.account_id == account_id)
            .order_by(MovementRow.seq)
        )
        return [AccountMovement.model_validate(row) for row in self._fetch(stmt)]


class SqlStorage(LedgerStorage):
    def __init__(self, engine: Engine, serialize: Optional[bool] = None):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        if serialize is None:
            serialize = engine.dialect.name == "sqlite"
        self._lock = threading.RLock() if serialize else None
        Base.metadata.create_all(bind=engine)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "SqlStorage":
        kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith(":")):
            # one shared connection, otherwise every session sees an empty database
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        return cls(create_engine(url, **kwargs))

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        with self._lock or nullcontext():
            with self.session_factory() as session, session.begin():
                yield SqlUnitOfWork(session)
