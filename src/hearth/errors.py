"""Error taxonomy for the engine."""


class HearthError(Exception):
    """Base class for all engine errors."""


class ValidationError(HearthError):
    """A request is missing a required field or has an invalid value.

    Never retried. Maps to HTTP 400.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StoreUnavailable(HearthError):
    """The state store could not be read or written.

    Callers must not treat this as an empty record.
    """


class ProviderError(HearthError):
    """The completion provider failed.

    Attributes:
        kind: One of 'rate_limit', 'auth', 'upstream', 'connection', 'empty'.
    """

    def __init__(self, message: str, kind: str = "upstream") -> None:
        super().__init__(message)
        self.kind = kind


class ProviderTimeout(ProviderError):
    """The completion provider did not answer within the hard timeout."""

    def __init__(self, message: str = "provider call timed out") -> None:
        super().__init__(message, kind="timeout")
