"""
Credential and Address Exceptions

This module defines the errors raised while decoding credentials and
addresses. Both are malformed requests from a caller's point of view.
"""

from txbuilder.exceptions import MalformedRequestError


class InvalidCredentialError(MalformedRequestError):
    """Raised when a credential hash or kind is invalid."""

    code = "invalid_credential"


class AddressError(MalformedRequestError):
    """Raised when an address cannot be decoded or lacks a required part."""

    code = "invalid_address"
