"""Error taxonomy shared by the propctl engine.

Every failure raised by the resolver, the version workflow, the hostname
reconciler or the activation state machine derives from :class:`PropctlError`
so the CLI can map it to a stable exit code.
"""
from __future__ import annotations


class PropctlError(RuntimeError):
    """Base class for engine failures."""


class NotFoundError(PropctlError):
    """Raised when a lookup key matches nothing, anywhere."""

    def __init__(self, lookup_key: str) -> None:
        """Record the key that could not be resolved."""
        super().__init__(f"Cannot find property: {lookup_key}")
        self.lookup_key = lookup_key


class NoEndpointError(PropctlError):
    """Raised when hostname reconciliation cannot infer an edge hostname."""

    def __init__(self) -> None:
        """Build the standard message."""
        super().__init__(
            "No edge hostnames found for property. Please specify an edge hostname."
        )


class RemoteError(PropctlError):
    """Base class for failures reported by the remote API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        """Store the HTTP status and raw body alongside the message."""
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PermissionDeniedError(RemoteError):
    """Raised on a 403 from a single-entity operation."""


class RemoteRejectedError(RemoteError):
    """Raised for a definitive non-2xx response; never retried."""


class ProtocolError(RemoteError):
    """Raised when a response violates the shape a call depends on."""


class TransientError(RemoteError):
    """Raised when no response was received at all."""


class RuleTreeError(PropctlError):
    """Raised when a rule document lacks the structure a mutation needs."""


__all__ = [
    "NoEndpointError",
    "NotFoundError",
    "PermissionDeniedError",
    "PropctlError",
    "ProtocolError",
    "RemoteError",
    "RemoteRejectedError",
    "RuleTreeError",
    "TransientError",
]
