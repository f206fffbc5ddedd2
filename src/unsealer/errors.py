"""Exception taxonomy for the unsealer.

Startup treats ConfigError and a failed initial key fetch as fatal.
Everything raised during steady-state reconciliation is contained to
the target or refresh cycle it happened in.
"""

from __future__ import annotations


class UnsealerError(Exception):
    """Base class for all unsealer errors."""


class ConfigError(UnsealerError):
    """Raised when a required setting is missing or invalid."""


class AuthError(UnsealerError):
    """Raised when the secrets-manager session is missing or rejected."""


class TransportError(UnsealerError):
    """Raised on network failures talking to a node or the secrets manager."""


class ProtocolError(UnsealerError):
    """Raised on a malformed response or an unexpected status code."""


class InvariantViolation(UnsealerError):
    """Raised when an unseal task hits an unexpected internal fault."""
