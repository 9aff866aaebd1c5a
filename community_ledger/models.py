from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class LedgerStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"


class RecordKind(str, Enum):
    PAYMENT = "payment"
    CASHOUT = "cashout"


class NewAccount(BaseModel):
    title: str
    description: str = ""
    active: bool = True


class Account(BaseModel):
    id: UUID
    community_id: UUID
    title: str
    description: str = ""
    active: bool = True
    balance: Decimal = Decimal("0.00")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NewPayment(BaseModel):
    account_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    status: LedgerStatus = LedgerStatus.PENDING
    title: str
    description: str = ""
    register_date: Optional[datetime] = None
    owner_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    voucher_image: Optional[str] = None
    is_email_sent: bool = False
    expense_ids: list[UUID] = Field(default_factory=list)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "account_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 30.00,
            "status": "Pending",
            "title": "Maintenance fee - March",
        }
    })


class EditPayment(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    status: Optional[LedgerStatus] = None
    title: Optional[str] = None
    description: Optional[str] = None
    register_date: Optional[datetime] = None
    owner_id: Optional[UUID] = None
    voucher_image: Optional[str] = None
    is_email_sent: Optional[bool] = None
    expense_ids: Optional[list[UUID]] = None
    expected_version: Optional[int] = Field(default=None, description="Reject the edit if the record moved past this version")

    model_config = ConfigDict(extra="forbid")


class NewCashout(BaseModel):
    account_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    status: LedgerStatus = LedgerStatus.PENDING
    title: str
    description: str = ""
    provider_id: Optional[UUID] = None
    bill_image: Optional[str] = None
    register_date: Optional[datetime] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "account_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 60.00,
            "status": "Paid",
            "title": "Gardening service",
        }
    })


class EditCashout(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    status: Optional[LedgerStatus] = None
    title: Optional[str] = None
    description: Optional[str] = None
    provider_id: Optional[UUID] = None
    bill_image: Optional[str] = None
    register_date: Optional[datetime] = None
    expected_version: Optional[int] = Field(default=None, description="Reject the edit if the record moved past this version")

    model_config = ConfigDict(extra="forbid")


class LedgerRecord(BaseModel):
    """Fields shared by every record that moves an account balance."""

    kind: ClassVar[RecordKind]

    id: UUID
    account_id: UUID
    amount: Decimal
    status: LedgerStatus
    title: str
    description: str = ""
    register_date: datetime
    version: int = 1
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_paid(self) -> bool:
        return self.status == LedgerStatus.PAID


class Payment(LedgerRecord):
    kind: ClassVar[RecordKind] = RecordKind.PAYMENT

    owner_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    voucher_image: Optional[str] = None
    is_email_sent: bool = False
    expense_ids: list[UUID] = Field(default_factory=list)


class Cashout(LedgerRecord):
    kind: ClassVar[RecordKind] = RecordKind.CASHOUT

    provider_id: Optional[UUID] = None
    bill_image: Optional[str] = None


RECORD_MODELS: dict[RecordKind, type[LedgerRecord]] = {
    RecordKind.PAYMENT: Payment,
    RecordKind.CASHOUT: Cashout,
}


class AccountMovement(BaseModel):
    id: UUID
    account_id: UUID
    record_kind: RecordKind
    record_id: UUID
    amount: Decimal
    balance_after: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountReconciliation(BaseModel):
    account_id: UUID
    balance: Decimal
    expected_balance: Decimal
    paid_payments_total: Decimal
    paid_cashouts_total: Decimal
    is_consistent: bool
