from decimal import Decimal
from uuid import UUID

import pytest

from community_ledger.models import LedgerStatus, NewAccount, NewPayment
from community_ledger.service import LedgerService
from community_ledger.sql_storage import SqlStorage
from community_ledger.storage import InMemoryStorage


COMMUNITY_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        yield InMemoryStorage()
        return
    sql_storage = SqlStorage.from_url("sqlite://")
    yield sql_storage
    sql_storage.engine.dispose()


@pytest.fixture
def service(storage):
    return LedgerService(storage)


@pytest.fixture
def account(service):
    return service.create_account(COMMUNITY_ID, NewAccount(title="Main account"))


@pytest.fixture
def fund(service):
    """Credit an account by recording a Paid payment against it."""

    def _fund(account_id: UUID, amount: str, community_id: UUID = COMMUNITY_ID):
        return service.create_payment(community_id, NewPayment(
            account_id=account_id,
            amount=Decimal(amount),
            status=LedgerStatus.PAID,
            title="Opening contribution",
        ))

    return _fund


@pytest.fixture
def balance_of(service):
    def _balance_of(account_id: UUID, community_id: UUID = COMMUNITY_ID) -> Decimal:
        return service.get_account(account_id, community_id).balance

    return _balance_of
