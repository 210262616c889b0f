"""Error taxonomy for machine scope construction and lifecycle operations.

Each failure mode has its own exception type so the reconcile loop can
decide how to react without parsing messages:

- MissingRequiredFieldError: scope parameters incomplete (fatal for this attempt)
- CredentialLookupError: credential secret or key absent (retry later)
- ClientConstructionError: token cannot build an API client (operator action)
- ConflictError: object changed since the snapshot (re-fetch and retry)
- Bootstrap*Error: bootstrap data not configured yet vs. misconfigured
"""

from __future__ import annotations


class ScopeError(Exception):
    """Base class for all machine scope errors."""

    pass


class MissingRequiredFieldError(ScopeError):
    """Raised when a required scope parameter is missing."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required when creating a MachineScope")


class CredentialLookupError(ScopeError):
    """Raised when a referenced credential secret or key cannot be read."""

    pass


class ClientConstructionError(ScopeError):
    """Raised when an API client cannot be initialized from a token."""

    pass


class NotFoundError(ScopeError):
    """Raised by the control plane when an object does not exist."""

    pass


class ConflictError(ScopeError):
    """Raised when a patch loses an optimistic concurrency race.

    The caller must re-fetch the object and retry the whole reconcile;
    retrying the patch alone would overwrite the concurrent change.
    """

    pass


class BootstrapDataError(ScopeError):
    """Base class for bootstrap data retrieval failures."""

    pass


class MissingBootstrapReferenceError(BootstrapDataError):
    """Raised when the Machine does not name a bootstrap data secret yet."""

    pass


class BootstrapSecretNotFoundError(BootstrapDataError):
    """Raised when the named bootstrap data secret does not exist."""

    pass


class BootstrapPayloadMissingError(BootstrapDataError):
    """Raised when the bootstrap secret has no payload key."""

    pass
