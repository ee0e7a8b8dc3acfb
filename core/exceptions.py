"""
Service-layer exceptions shared by the workflows, the ledger and the web API.

The web layer maps each class to an HTTP status code in
``web.backend.exceptions.service_exception_handler``.
"""

from typing import Optional


class ServiceException(Exception):
    """Base exception for service layer errors."""
    status_code = 500


class ValidationError(ServiceException):
    """Raised when an inbound payload is malformed."""
    status_code = 400


class NotFoundError(ServiceException):
    """Raised when a search, strategy, candidate or organization is missing."""
    status_code = 404


class InsufficientCreditsError(ServiceException):
    """Raised when the ledger rejects a debit. Nothing has been mutated."""
    status_code = 402


class SequencingError(ServiceException):
    """Raised when a step runs before the step it depends on (e.g. scoring before the model is cached)."""
    status_code = 409


class UpstreamError(ServiceException):
    """Raised when an external API answers non-2xx or with an unusable body."""
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = status_code


class PollingTimeoutError(ServiceException):
    """Raised when a strategy exhausts its polling budget."""
    status_code = 504
