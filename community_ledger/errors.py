class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class ConflictError(LedgerServiceError):
    pass


class AmountLockedError(ConflictError):
    pass
