"""Error taxonomy shared by the exchange adapter, position store and coordinator."""


class ArenaError(Exception):
    """Base class for all service errors."""


class ExchangeError(ArenaError):
    """The exchange rejected a request or returned something unusable."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class ExchangeTransientError(ExchangeError):
    """Rate limit, timeout or network failure. Safe to retry for reads."""


class ExchangeSizeLimitError(ExchangeError):
    """Order rejected for exceeding the exchange's maximum order size."""


class PositionConflictError(ArenaError):
    """A second open record was about to be stored for the same coin and side."""


class InvalidStatusTransition(ArenaError):
    """Attempt to reopen a closed position record."""
