from typing import Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .logs import configure_logging, get_logger
from .models import (
    Account, AccountMovement, AccountReconciliation, Cashout, EditCashout,
    EditPayment, LedgerStatus, NewAccount, NewCashout, NewPayment, Payment,
)
from .service import (
    LedgerService, LedgerServiceError, NotFoundError, ConflictError, build_storage,
)

settings = get_settings()
configure_logging(settings)
log = get_logger(__name__)

app = FastAPI(
    title="Community Ledger API",
    description="Payments, cashouts and account balances for residential communities",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(build_storage(settings))


def _status_for(exc: LedgerServiceError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    code = _status_for(exc)
    log.info("request_rejected", path=request.url.path, status_code=code, error=type(exc).__name__)
    return JSONResponse(status_code=code, content={"error": type(exc).__name__, "detail": str(exc)})


# The gateway in front of this service authenticates the caller, checks the
# admin role and forwards the caller's community in X-Community-Id.
def community_scope(x_community_id: UUID = Header(...)) -> UUID:
    return x_community_id


CommunityScope = Depends(community_scope)


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": settings.service_name}


@app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def create_account(request: NewAccount, community_id: UUID = CommunityScope) -> Account:
    return ledger_service.create_account(community_id, request)


@app.get("/accounts", response_model=list[Account], tags=["Accounts"])
def list_accounts(community_id: UUID = CommunityScope) -> list[Account]:
    return ledger_service.list_accounts(community_id)


@app.get("/accounts/{account_id}", response_model=Account, tags=["Accounts"])
def get_account(account_id: UUID, community_id: UUID = CommunityScope) -> Account:
    return ledger_service.get_account(account_id, community_id)


@app.get("/accounts/{account_id}/movements", response_model=list[AccountMovement], tags=["Accounts"])
def get_account_movements(account_id: UUID, community_id: UUID = CommunityScope) -> list[AccountMovement]:
    return ledger_service.get_account_movements(account_id, community_id)


@app.get("/accounts/{account_id}/reconciliation", response_model=AccountReconciliation, tags=["Accounts"])
def reconcile_account(account_id: UUID, community_id: UUID = CommunityScope) -> AccountReconciliation:
    return ledger_service.reconcile_account(account_id, community_id)


@app.post("/payments", response_model=Payment, status_code=status.HTTP_201_CREATED, tags=["Payments"])
def create_payment(request: NewPayment, community_id: UUID = CommunityScope) -> Payment:
    return ledger_service.create_payment(community_id, request)


@app.get("/payments", response_model=list[Payment], tags=["Payments"])
def get_all_payments(
    community_id: UUID = CommunityScope,
    status: Optional[LedgerStatus] = None,
    account_id: Optional[UUID] = None,
) -> list[Payment]:
    return ledger_service.get_all_payments(community_id, status, account_id)


@app.get("/payments/{payment_id}", response_model=Payment, tags=["Payments"])
def get_payment(payment_id: UUID, community_id: UUID = CommunityScope) -> Payment:
    return ledger_service.get_payment(payment_id, community_id)


@app.patch("/payments/{payment_id}", response_model=Payment, tags=["Payments"])
def edit_payment(payment_id: UUID, request: EditPayment, community_id: UUID = CommunityScope) -> Payment:
    return ledger_service.edit_payment(payment_id, community_id, request)


@app.post("/cashouts", response_model=Cashout, status_code=status.HTTP_201_CREATED, tags=["Cashouts"])
def create_cashout(request: NewCashout, community_id: UUID = CommunityScope) -> Cashout:
    return ledger_service.create_cashout(community_id, request)


@app.get("/cashouts", response_model=list[Cashout], tags=["Cashouts"])
def get_all_cashouts(
    community_id: UUID = CommunityScope,
    status: Optional[LedgerStatus] = None,
    account_id: Optional[UUID] = None,
) -> list[Cashout]:
    return ledger_service.get_all_cashouts(community_id, status, account_id)


@app.get("/cashouts/{cashout_id}", response_model=Cashout, tags=["Cashouts"])
def get_cashout(cashout_id: UUID, community_id: UUID = CommunityScope) -> Cashout:
    return ledger_service.get_cashout(cashout_id, community_id)


@app.patch("/cashouts/{cashout_id}", response_model=Cashout, tags=["Cashouts"])
def edit_cashout(cashout_id: UUID, request: EditCashout, community_id: UUID = CommunityScope) -> Cashout:
    return ledger_service.edit_cashout(cashout_id, community_id, request)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
