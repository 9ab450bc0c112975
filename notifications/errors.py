"""Exception taxonomy for the notification service.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with. ``DataError`` and its subclasses are permanent and
client-correctable; ``InfrastructureError`` covers transient store failures.
"""
from __future__ import annotations

from typing import Any, Optional


class NotificationError(Exception):
    """Base exception for the notification service."""

    def __init__(self, code: str, message: str, details: Optional[Any] = None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class DataError(NotificationError):
    """Malformed or incompatible stored data."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__("DATA_ERROR", message, details, status_code=400)


class MalformedBatchError(DataError):
    """A pending batch holds entries that can never be delivered."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, details)
        self.code = "MALFORMED_BATCH"


class UnsupportedProviderError(DataError):
    """EMAIL_PROVIDER names a backend that does not exist."""

    def __init__(self, provider: str):
        super().__init__(f"Email provider '{provider}' not supported", details={"provider": provider})
        self.code = "UNSUPPORTED_PROVIDER"
        self.provider = provider


class InfrastructureError(NotificationError):
    """Transient failure of the shared batch store."""

    def __init__(self, code: str, message: str, details: Optional[Any] = None):
        super().__init__(code, message, details, status_code=500)


class AuthError(InfrastructureError):
    def __init__(self, message: str = "Batch store rejected the credentials", details: Optional[Any] = None):
        super().__init__("STORE_AUTH_ERROR", message, details)


class ConnectivityError(InfrastructureError):
    def __init__(self, message: str = "Batch store is unreachable", details: Optional[Any] = None):
        super().__init__("STORE_CONNECTIVITY_ERROR", message, details)


class UnknownError(InfrastructureError):
    def __init__(self, message: str = "Unexpected batch store failure", details: Optional[Any] = None):
        super().__init__("STORE_UNKNOWN_ERROR", message, details)


class DeliveryError(NotificationError):
    """An email backend rejected or failed the send."""

    def __init__(self, provider: str, message: str):
        super().__init__("DELIVERY_ERROR", message, details={"provider": provider}, status_code=500)
        self.provider = provider


class SendFailure(NotificationError):
    """Client-facing failure of an instant email dispatch."""

    def __init__(self, message: str):
        super().__init__("SEND_FAILURE", f"Error sending email: {message}", status_code=400)


class ValidationError(NotificationError):
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(NotificationError):
    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message, status_code=404)


class PersistenceError(NotificationError):
    def __init__(self, message: str = "Please check server logs."):
        super().__init__("PERSISTENCE_ERROR", message, status_code=500)
