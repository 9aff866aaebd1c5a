"""
Transition policy for balance-moving records.

Every status change of a Payment or Cashout is looked up in a fixed table
that says which way the linked account balance moves and whether the move
is subject to a balance floor. Nothing here touches storage.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .models import LedgerStatus, RecordKind


@dataclass(frozen=True)
class BalanceDelta:
    amount: Decimal
    required_minimum_after: Optional[Decimal] = None

    @property
    def is_debit(self) -> bool:
        return self.amount < 0


@dataclass(frozen=True)
class TransitionRule:
    sign: int
    floor: Optional[Decimal] = None


_P, _C = RecordKind.PAYMENT, RecordKind.CASHOUT
_PENDING, _PAID = LedgerStatus.PENDING, LedgerStatus.PAID

# Missing (previous, next) pairs are no-ops.
TRANSITION_TABLE: dict[tuple[RecordKind, LedgerStatus, LedgerStatus], TransitionRule] = {
    (_P, _PENDING, _PAID): TransitionRule(sign=+1),
    # reversing an erroneous Paid marking may take the balance negative
    (_P, _PAID, _PENDING): TransitionRule(sign=-1),
    (_C, _PENDING, _PAID): TransitionRule(sign=-1, floor=Decimal("0")),
    (_C, _PAID, _PENDING): TransitionRule(sign=+1),
}


def resolve(
    kind: RecordKind,
    previous: LedgerStatus,
    next_status: LedgerStatus,
    amount: Decimal,
) -> Optional[BalanceDelta]:
    rule = TRANSITION_TABLE.get((kind, previous, next_status))
    if rule is None:
        return None
    return BalanceDelta(amount=rule.sign * amount, required_minimum_after=rule.floor)


def effective_amount(
    previous: LedgerStatus,
    next_status: LedgerStatus,
    old_amount: Decimal,
    new_amount: Decimal,
) -> Decimal:
    """
    Pick the amount a transition moves.

    Leaving Paid undoes what was applied, so it uses the old amount.
    Entering Paid (or staying Pending) uses the amount the record will hold.
    """
    if previous == LedgerStatus.PAID and next_status != LedgerStatus.PAID:
        return old_amount
    return new_amount


def amount_is_locked(
    previous: LedgerStatus,
    next_status: LedgerStatus,
    old_amount: Decimal,
    new_amount: Decimal,
) -> bool:
    return previous == next_status == LedgerStatus.PAID and old_amount != new_amount
