"""
Programmable Tokens - Builder Exceptions

This module defines the typed error taxonomy surfaced by the transaction
builders and the operations service. Every error carries a stable code so
callers can branch on it without parsing messages.
"""

from typing import Optional


class ProtocolError(Exception):
    """Base exception for programmable token operations."""

    code = "protocol_error"
    retryable = False

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.reason = message or self.__class__.__doc__

    def to_dict(self):
        return {"code": self.code, "reason": self.reason, "retryable": self.retryable}


class StateUnavailableError(ProtocolError):
    """Required bootstrap or registry state could not be loaded."""

    code = "state_unavailable"
    retryable = True


class ConflictError(ProtocolError):
    """The state read while planning is no longer consistent."""

    code = "conflict"
    retryable = True


class InsufficientFundsError(ProtocolError):
    """Exception raised when selected inputs cannot cover outputs and fees."""

    code = "insufficient_funds"

    def __init__(self, required: int, available: int, unit: str = "lovelace", message: Optional[str] = None):
        self.required = required
        self.available = available
        self.unit = unit
        if message is None:
            message = f"Insufficient funds: required {required} {unit}, available {available} {unit}"
        super().__init__(message)


class NotRegisteredError(ProtocolError):
    """The policy has no registry node."""

    code = "not_registered"


class AlreadyRegisteredError(ProtocolError):
    """The policy already has a registry node."""

    code = "already_registered"


class DuplicateKeyError(ProtocolError):
    """The key is already present in the sorted list."""

    code = "duplicate_key"


class NotFoundError(ProtocolError):
    """The requested node or record does not exist."""

    code = "not_found"


class ValidationRejectedError(ProtocolError):
    """Local script evaluation rejected the transaction."""

    code = "validation_rejected"


class MalformedRequestError(ProtocolError):
    """The request is missing fields or carries invalid values."""

    code = "malformed_request"
