"""
Error taxonomy for the registration pipeline and capability index.

Every error carries a human-readable message and the HTTP status the
routers translate it into. Transport exceptions from httpx or web3 never
escape past the pipeline; they are converted into one of these first.
"""
from typing import Optional


class DirectoryError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(DirectoryError):
    """Malformed input. Always user-correctable, no side effects."""
    status_code = 400


class NotFoundError(DirectoryError):
    status_code = 404


class ConflictError(DirectoryError):
    """Name already taken, locally or on-chain."""
    status_code = 409


class RateLimitedError(DirectoryError):
    status_code = 429

    def __init__(self, message: str, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message)


class ExternalUnavailableError(DirectoryError):
    """A verification probe or the directory RPC could not give an answer."""
    status_code = 503


class SponsorNotConfiguredError(DirectoryError):
    status_code = 500


class FundingError(DirectoryError):
    """Sponsor wallet balance does not cover fee plus gas buffer. Operator-actionable."""
    status_code = 503


class ChainError(DirectoryError):
    """Submission or confirmation failed. Carries the tx hash when one exists."""
    status_code = 500

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)
