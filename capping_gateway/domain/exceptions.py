"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidPolicyError(DomainException):
    """Capping floors are negative or not numeric"""

    pass


class MalformedTransactionError(DomainException):
    """Caller passed a structurally invalid transaction (unknown type, missing account)"""

    pass


class StaleSnapshotError(DomainException):
    """No fresh cached balance exists for the requested account"""

    pass


class SubmissionNotAllowedError(DomainException):
    """Submit requested without a successful local evaluation"""

    pass


class SubmissionInProgressError(DomainException):
    """A submission for this form is already in flight"""

    pass


class LedgerAPIError(DomainException):
    """Ledger API returned an error or is unavailable"""

    reason = "LedgerError"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LedgerNetworkError(LedgerAPIError):
    """Timeout or transport failure talking to the ledger"""

    reason = "NetworkError"


class LedgerUnauthorizedError(LedgerAPIError):
    """Ledger refused the caller (403)"""

    reason = "Unauthorized"


class StaleBalanceError(LedgerAPIError):
    """Balances changed since the client evaluated the transaction (409)"""

    reason = "StaleBalance"


class LedgerRejectionError(LedgerAPIError):
    """Ledger rejected the request on business grounds (422) or failed"""

    reason = "Rejected"
