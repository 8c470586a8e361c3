"""
Programmable Tokens - Transaction Builders

This package assembles unsigned transactions for registering, minting,
burning, transferring and administering programmable tokens. Builders live
in submodules; the package itself only exposes the error taxonomy so that
lower layers can depend on it without import cycles.
"""

from .exceptions import (
    ProtocolError,
    StateUnavailableError,
    ConflictError,
    InsufficientFundsError,
    NotRegisteredError,
    AlreadyRegisteredError,
    DuplicateKeyError,
    NotFoundError,
    ValidationRejectedError,
    MalformedRequestError,
)

__all__ = [
    "ProtocolError",
    "StateUnavailableError",
    "ConflictError",
    "InsufficientFundsError",
    "NotRegisteredError",
    "AlreadyRegisteredError",
    "DuplicateKeyError",
    "NotFoundError",
    "ValidationRejectedError",
    "MalformedRequestError",
]
