"""Exceptions raised while retrieving bills.

Workflow errors never cross a provider boundary: the workflow interpreter
catches every ``BillburnerError`` and marks the provider as failed.
"""


class BillburnerError(Exception):
    """Base class for bill retrieval failures."""

    pass


class SessionConnectionError(BillburnerError, ConnectionError):
    """Raised when a browser session or mailbox connection cannot be established."""

    pass


class AuthStepTimeout(BillburnerError):
    """Raised when a login or challenge element never appears within its bound."""

    pass


class ResultTimeout(BillburnerError):
    """Raised when the element holding the bill never appears within its bound."""

    pass


class ParseFailure(BillburnerError):
    """Raised when amount or date text does not match the expected pattern."""

    pass


class OtpUnavailable(BillburnerError):
    """Raised when no verification code could be read from the mailbox."""

    pass


class MissingCredentials(BillburnerError):
    """Raised when a provider's credentials are not configured."""

    pass


class RunCancelled(Exception):
    """Raised inside a workflow once the run has been interrupted or timed out."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Run cancelled: {reason}")
        self.reason = reason
