"""Source adapter error contract.

Every adapter failure surfaces as a ``SourceError`` subclass so callers can
recover with a single ``except`` clause.
"""

from typing import Optional


class SourceError(Exception):
    """Base class for data-source failures."""


class NetworkError(SourceError):
    """Non-success HTTP status or transport failure.

    Args:
        status: HTTP status code, or ``None`` when the request never got a
                response (connection refused, timeout, ...).
        message: Human-readable description shown inline by the view.
    """

    def __init__(self, status: Optional[int], message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} ({self.status})"


class ParseError(SourceError):
    """Malformed JSON/JSONL payload, line, or record."""
