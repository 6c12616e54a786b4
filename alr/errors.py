from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ResourceState, ServiceBinding


class ReconcileError(Exception):
    """Base class for all reconciliation errors.

    `state` carries the partially applied resource state when a failure left
    remote changes behind that the caller must persist (e.g. a deposed
    venerable application after a failed rollout).
    """

    def __init__(self, message: str = "", state: ResourceState | None = None):
        super().__init__(message)
        self.state = state

    def with_state(self, state: ResourceState) -> ReconcileError:
        self.state = state
        return self


class PlatformError(ReconcileError):
    """The control-plane rejected a request."""

    def __init__(self, status: int, body: Any = None, message: str = ""):
        super().__init__(message or f"platform request failed with status code: {status}")
        self.status = status
        self.body = body


class NotFound(PlatformError):
    """Remote 404. Delete-oriented paths treat this as already absent."""

    def __init__(self, body: Any = None, message: str = ""):
        super().__init__(404, body, message or "platform request failed with status code: 404")


class ConflictingBinding(ReconcileError):
    """A route is already mapped to another application."""

    def __init__(self, route_id: str):
        super().__init__(
            f"route with id {route_id} is already mapped. "
            "routes can only be mapped to one application resource"
        )
        self.route_id = route_id


class PartialBindingFailure(ReconcileError):
    """Some service bindings were created before a later one failed."""

    def __init__(self, created: list[ServiceBinding], cause: Exception):
        super().__init__(f"service binding failed after {len(created)} binding(s) were created: {cause}")
        self.created = created
        self.cause = cause


class UploadFailure(ReconcileError):
    """Artifact upload failed; nothing was started or restaged."""


class TimeoutExceeded(ReconcileError):
    """An application did not report started within the configured timeout."""


class ArtifactError(ReconcileError):
    """The application source or binary could not be resolved."""


class InvalidConfiguration(ReconcileError):
    """The desired configuration cannot be applied as given."""


class InvalidRollout(ReconcileError):
    """Illegal blue-green state transition attempted."""
