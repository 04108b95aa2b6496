class LedgerServiceError(Exception):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class WalletNotFoundError(LedgerServiceError):
    pass


class RequestNotFoundError(LedgerServiceError):
    pass


class AlreadyResolvedError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class AccessDeniedError(LedgerServiceError):
    pass


class LeagueNotFoundError(LedgerServiceError):
    pass


class LedgerIntegrityError(LedgerServiceError):
    pass


class MemberNotFoundError(LedgerServiceError):
    pass
