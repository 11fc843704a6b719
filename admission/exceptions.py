"""Exception hierarchy for the admission core.

Rejections are not exceptions: a failed or raising risk gate is reported
as a ``Decision``.
"""


class AdmissionError(Exception):
    """Base class for all admission errors."""


class CacheComputationFailed(AdmissionError):
    """The computation behind an interval cache entry raised.

    Every caller that was awaiting the same in-flight computation receives
    this error; the entry is cleared so the next call retries.
    """

    def __init__(self, key: str, window: int, message: str = ""):
        self.key = key
        self.window = window
        super().__init__(
            f"Cached computation failed for key={key!r} window={window}"
            + (f": {message}" if message else "")
        )


class RiskSchemaError(AdmissionError, ValueError):
    """A risk schema is malformed or its name is already registered."""

