"""
Tests for accounts, the movement journal, reconciliation and the
storage unit-of-work contract.
"""

import pytest
from decimal import Decimal
from uuid import UUID, uuid4

from community_ledger.errors import ConflictError, InsufficientFundsError, NotFoundError
from community_ledger.models import (
    EditCashout,
    EditPayment,
    LedgerStatus,
    NewAccount,
    NewCashout,
    NewPayment,
    RecordKind,
)


# Test constants
COMMUNITY_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_COMMUNITY_ID = UUID("660e8400-e29b-41d4-a716-446655440001")


class TestAccounts:
    """Tests for account bookkeeping."""

    def test_new_account_starts_empty(self, service):
        account = service.create_account(COMMUNITY_ID, NewAccount(title="Reserve fund", description="Roof works"))

        fetched = service.get_account(account.id, COMMUNITY_ID)
        assert fetched.balance == Decimal("0")
        assert fetched.title == "Reserve fund"
        assert fetched.community_id == COMMUNITY_ID
        assert fetched.active is True

    def test_accounts_are_scoped_to_community(self, service):
        mine = service.create_account(COMMUNITY_ID, NewAccount(title="Mine"))
        theirs = service.create_account(OTHER_COMMUNITY_ID, NewAccount(title="Theirs"))

        assert [a.id for a in service.list_accounts(COMMUNITY_ID)] == [mine.id]
        with pytest.raises(NotFoundError):
            service.get_account(theirs.id, COMMUNITY_ID)
        with pytest.raises(NotFoundError):
            service.get_account_movements(theirs.id, COMMUNITY_ID)


class TestMovementsAndReconciliation:
    """The balance always equals paid payments minus paid cashouts."""

    def test_movement_per_applied_delta(self, service, account, fund):
        payment = fund(account.id, "100.00")
        cashout = service.create_cashout(COMMUNITY_ID, NewCashout(
            account_id=account.id, amount=Decimal("25.00"), status=LedgerStatus.PAID, title="Cleaning",
        ))

        movements = service.get_account_movements(account.id, COMMUNITY_ID)

        assert [(m.record_kind, m.record_id) for m in movements] == [
            (RecordKind.PAYMENT, payment.id),
            (RecordKind.CASHOUT, cashout.id),
        ]
        assert [m.balance_after for m in movements] == [Decimal("100.00"), Decimal("75.00")]

    def test_rejected_edit_leaves_no_movement(self, service, account):
        cashout = service.create_cashout(COMMUNITY_ID, NewCashout(
            account_id=account.id, amount=Decimal("25.00"), title="Cleaning",
        ))

        with pytest.raises(InsufficientFundsError):
            service.edit_cashout(cashout.id, COMMUNITY_ID, EditCashout(status=LedgerStatus.PAID))

        assert service.get_account_movements(account.id, COMMUNITY_ID) == []

    def test_reconciliation_after_mixed_history(self, service, account, fund):
        fund(account.id, "100.00")
        refunded = fund(account.id, "40.00")
        service.edit_payment(refunded.id, COMMUNITY_ID, EditPayment(status=LedgerStatus.PENDING))
        service.create_payment(COMMUNITY_ID, NewPayment(
            account_id=account.id, amount=Decimal("15.00"), title="Still pending",
        ))
        paid_out = service.create_cashout(COMMUNITY_ID, NewCashout(
            account_id=account.id, amount=Decimal("30.00"), status=LedgerStatus.PAID, title="Gardening",
        ))
        service.edit_cashout(paid_out.id, COMMUNITY_ID, EditCashout(status=LedgerStatus.PENDING))
        service.edit_cashout(paid_out.id, COMMUNITY_ID, EditCashout(status=LedgerStatus.PAID))

        report = service.reconcile_account(account.id, COMMUNITY_ID)

        assert report.is_consistent
        assert report.paid_payments_total == Decimal("100.00")
        assert report.paid_cashouts_total == Decimal("30.00")
        assert report.balance == Decimal("70.00")
        assert report.expected_balance == Decimal("70.00")


class TestUnitOfWork:
    """Storage-level guarantees, run against every backend."""

    def test_conditional_adjust_below_floor_keeps_balance(self, storage, service, account, fund):
        fund(account.id, "10.00")

        with pytest.raises(InsufficientFundsError):
            with storage.unit_of_work() as uow:
                uow.conditional_adjust(account.id, Decimal("-10.01"), required_minimum_after=Decimal("0"))

        assert service.get_account(account.id, COMMUNITY_ID).balance == Decimal("10.00")

    def test_conditional_adjust_in_cents_stays_exact(self, storage, service, account, fund):
        fund(account.id, "1.00")

        for _ in range(10):
            with storage.unit_of_work() as uow:
                uow.conditional_adjust(account.id, Decimal("-0.10"), required_minimum_after=Decimal("0"))

        assert service.get_account(account.id, COMMUNITY_ID).balance == Decimal("0")
        with pytest.raises(InsufficientFundsError):
            with storage.unit_of_work() as uow:
                uow.conditional_adjust(account.id, Decimal("-0.01"), required_minimum_after=Decimal("0"))

    def test_conditional_adjust_without_floor_goes_negative(self, storage, service, account):
        with storage.unit_of_work() as uow:
            updated = uow.conditional_adjust(account.id, Decimal("-5.00"))

        assert updated.balance == Decimal("-5.00")

    def test_conditional_adjust_missing_account(self, storage):
        with pytest.raises(NotFoundError):
            with storage.unit_of_work() as uow:
                uow.conditional_adjust(uuid4(), Decimal("5.00"))

    def test_failure_rolls_back_balance(self, storage, service, account):
        """A balance change is undone when a later step of the unit fails."""
        with pytest.raises(RuntimeError):
            with storage.unit_of_work() as uow:
                uow.conditional_adjust(account.id, Decimal("50.00"))
                raise RuntimeError("record update failed")

        assert service.get_account(account.id, COMMUNITY_ID).balance == Decimal("0")

    def test_update_record_with_stale_version_conflicts(self, storage, service, account):
        payment = service.create_payment(COMMUNITY_ID, NewPayment(
            account_id=account.id, amount=Decimal("30.00"), title="Fee",
        ))

        with pytest.raises(ConflictError):
            with storage.unit_of_work() as uow:
                uow.update_record(RecordKind.PAYMENT, payment.id, expected_version=7, changes={"title": "Late"})

        assert service.get_payment(payment.id, COMMUNITY_ID).title == "Fee"

    def test_returned_models_are_detached_from_the_store(self, storage, service, account):
        """Mutating what a read returns never reaches the stored state."""
        payment = service.create_payment(COMMUNITY_ID, NewPayment(
            account_id=account.id, amount=Decimal("30.00"), title="Fee", expense_ids=[uuid4()],
        ))
        payment.status = LedgerStatus.PAID

        with storage.unit_of_work() as uow:
            fetched = uow.get_record(RecordKind.PAYMENT, payment.id, COMMUNITY_ID)
            fetched.status = LedgerStatus.PAID
            fetched.expense_ids.append(uuid4())
            listed = uow.list_records(RecordKind.PAYMENT, COMMUNITY_ID)
            listed[0].title = "Tampered"
            uow.get_account(account.id).balance = Decimal("999.00")

        stored = service.get_payment(payment.id, COMMUNITY_ID)
        assert stored.status == LedgerStatus.PENDING
        assert stored.title == "Fee"
        assert len(stored.expense_ids) == 1
        assert stored.version == 1
        assert service.get_account(account.id, COMMUNITY_ID).balance == Decimal("0")

    def test_get_record_hides_other_communities(self, storage, service, account):
        payment = service.create_payment(COMMUNITY_ID, NewPayment(
            account_id=account.id, amount=Decimal("30.00"), title="Fee",
        ))

        with storage.unit_of_work() as uow:
            assert uow.get_record(RecordKind.PAYMENT, payment.id, COMMUNITY_ID) is not None
            assert uow.get_record(RecordKind.PAYMENT, payment.id, OTHER_COMMUNITY_ID) is None
            assert uow.get_record(RecordKind.CASHOUT, payment.id, COMMUNITY_ID) is None
