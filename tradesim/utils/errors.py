"""Error taxonomy shared by the engine, services and API layer.

Each error carries the HTTP status the API boundary maps it to. Ledger errors
never reach a client: the engine logs them and treats the tick as a hold.
"""


class TradingError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(TradingError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 400


class NotFoundError(TradingError):
    """Unknown run or asset."""

    status_code = 404


class AuthorizationError(TradingError):
    """Missing credentials (401) or access to a foreign run (403)."""

    status_code = 401

    def __init__(self, message: str = "", forbidden: bool = False):
        super().__init__(message)
        if forbidden:
            self.status_code = 403


class AlreadyCompleted(TradingError):
    """Finalize called on a run that is already completed."""

    status_code = 409


class UpstreamUnavailable(TradingError):
    """Market data or prediction provider failure."""

    status_code = 503


class RateLimited(UpstreamUnavailable):
    """Upstream rejected the request for exceeding its rate limit."""

    status_code = 429

    def __init__(self, message: str = "", retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class LedgerError(TradingError):
    """Ledger invariant violation; indicates a decision-policy bug."""


class InsufficientFunds(LedgerError):
    pass


class InsufficientPosition(LedgerError):
    pass
