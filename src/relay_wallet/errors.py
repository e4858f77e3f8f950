"""Error taxonomy shared by the broker, its collaborators, and the HTTP layer.

Every operation-level failure is a :class:`BrokerError`. The HTTP server
renders these as ``{"error": ..., "code": ...}`` using the class's
``status_code``; only :class:`ConfigurationError` is fatal, and only at
startup.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for all operation-level failures."""

    code: str = "broker_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotInitialized(BrokerError):
    """The operation needs a wallet identity that does not exist yet."""

    code = "not_initialized"
    status_code = 400


class NotFound(BrokerError):
    """The referenced proposal or request is not pending."""

    code = "not_found"
    status_code = 404


class InvalidParams(BrokerError):
    """Malformed operator input or inbound event payload."""

    code = "invalid_params"
    status_code = 400


class UnsupportedOperation(BrokerError):
    """The active signer (or the negotiator) refuses the operation."""

    code = "unsupported_operation"
    status_code = 422


class UnsupportedMethod(BrokerError):
    """The dApp asked for a JSON-RPC method this wallet does not handle."""

    code = "unsupported_method"
    status_code = 422


class MethodNotImplemented(BrokerError):
    """A known method that is deliberately left unhandled."""

    code = "not_implemented"
    status_code = 501


class CollaboratorFailure(BrokerError):
    """A relay or RPC call failed. Wraps the underlying message."""

    code = "collaborator_failure"
    status_code = 502

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class ConfigurationError(BrokerError):
    """Required runtime configuration is missing."""

    code = "configuration_error"
    status_code = 500
