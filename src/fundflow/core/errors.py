"""Error taxonomy for the governance engines.

Concurrent status transitions are deliberately absent: a compare-and-swap update
that changes nothing is an idempotent no-op, reported as ``False`` by the repository.
"""

from __future__ import annotations


class FundflowError(Exception):
    """Base class for all fundflow errors."""


class ConfigurationError(FundflowError):
    """A funding round's dates are malformed. Raised at creation time, never at read time."""


class NotFoundError(FundflowError):
    """An unknown funding round or proposal id."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class OracleUnavailable(FundflowError):
    """The vote oracle timed out, failed, or returned something unusable.

    Callers recover locally by falling back to the cached snapshot or the empty default.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class VoteNotAllowed(FundflowError):
    """A well-formed vote that the current round or proposal state does not accept."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.status_code = status_code
        super().__init__(message)
