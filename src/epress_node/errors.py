"""Exception taxonomy shared by the services and the API layer.

Every rejection raised by a service derives from :class:`ProtocolError` and
carries a stable ``code`` that the API layer maps onto an HTTP status. Client
side failures that may be retried by the user live at the bottom of the module.
"""

from __future__ import annotations


class ProtocolError(Exception):
    """Base class for rejections produced by the attestation protocol."""

    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationFailedError(ProtocolError):
    """Raised when input fields are missing or invalid."""

    code = "VALIDATION_FAILED"


class MalformedStatementError(ValidationFailedError):
    """Raised when a typed statement cannot be built from the supplied fields."""


class SignatureMismatchError(ProtocolError):
    """Raised when a signature does not recover to the expected signer."""

    code = "INVALID_SIGNATURE"


class TokenRejectedError(ProtocolError):
    """Raised when a confirmation or session token is not acceptable."""

    code = "VERIFICATION_FAILED"


class TokenExpiredError(TokenRejectedError):
    """The token signature is authentic but its expiry has passed."""


class TokenInvalidError(TokenRejectedError):
    """The token is malformed, forged, or carries an unusable payload."""


class ImmutabilityError(ProtocolError):
    """Raised when signed content would be modified or re-signed."""

    code = "IMMUTABLE"


class ForbiddenError(ProtocolError):
    """Raised when the caller is not allowed to perform an action."""

    code = "FORBIDDEN"


class NotFoundError(ProtocolError):
    """Raised when a referenced entity does not exist."""

    code = "NOT_FOUND"


class ConflictError(ProtocolError):
    """Raised when an entity already exists."""

    code = "CONFLICT"


class FeatureDisabledError(ProtocolError):
    """Raised when the node owner switched a feature off."""

    code = "FEATURE_DISABLED"


class FederationError(ProtocolError):
    """Raised when a remote node cannot be reached or answers unexpectedly."""

    code = "FEDERATION_FAILED"


class TransientChannelError(Exception):
    """A recoverable client-side failure (network drop, wallet cancelled)."""


class SigningCancelled(TransientChannelError):
    """The user dismissed or failed the wallet signing prompt."""
