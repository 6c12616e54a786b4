from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import LEGACY_SLOTS, ApplicationSpec, ChangeTier

IN_PLACE_FIELDS = ("name", "space", "instances", "enable_ssh", "docker_image", "docker_credentials")
RESTART_FIELDS = (
    "ports",
    "memory",
    "disk_quota",
    "command",
    "health_check_type",
    "health_check_http_endpoint",
    "health_check_timeout",
)
RESTAGE_FIELDS = ("buildpack", "stack", "environment")

# Fields whose change means a new binary has to be uploaded.
BINARY_FIELDS = ("url", "git", "github_release", "add_content")

FIELD_TIERS: dict[str, ChangeTier] = {
    **{f: ChangeTier.IN_PLACE_UPDATE for f in IN_PLACE_FIELDS},
    **{f: ChangeTier.RESTART for f in RESTART_FIELDS},
    **{f: ChangeTier.RESTAGE for f in RESTAGE_FIELDS},
}


@dataclass
class ChangeSet:
    """Outcome of comparing two application specs."""

    tier: ChangeTier = ChangeTier.NONE
    delta: dict[str, Any] = field(default_factory=dict)
    force_new: bool = False
    binary_changed: bool = False
    bindings_changed: bool = False
    routes_changed: bool = False
    stopped_changed: bool = False

    @property
    def update(self) -> bool:
        return self.tier >= ChangeTier.IN_PLACE_UPDATE

    @property
    def restart(self) -> bool:
        return self.tier >= ChangeTier.RESTART

    @property
    def restage(self) -> bool:
        return self.tier >= ChangeTier.RESTAGE

    @property
    def empty(self) -> bool:
        return not (
            self.tier
            or self.force_new
            or self.binary_changed
            or self.bindings_changed
            or self.routes_changed
            or self.stopped_changed
        )


def _bindings_key(spec: ApplicationSpec) -> list[tuple[str, Any]]:
    return [(b.service_instance, b.params or {}) for b in spec.service_bindings]


def _routes_key(spec: ApplicationSpec) -> Any:
    if spec.route is None:
        return None
    if spec.route.kind == "legacy":
        return ("legacy", tuple(spec.route.route(s) for s in LEGACY_SLOTS))
    return ("set", frozenset(spec.route.route_ids()))


def classify(old: ApplicationSpec, new: ApplicationSpec) -> ChangeSet:
    """Bucket every changed field into its tier and return the highest one.

    Computed values (mapping ids, binding ids) never count as changes.
    """
    cs = ChangeSet()

    for name, tier in FIELD_TIERS.items():
        before, after = getattr(old, name), getattr(new, name)
        if before == after:
            continue
        cs.delta[name] = after
        cs.tier = max(cs.tier, tier)

    if old.source_kind != new.source_kind:
        cs.force_new = True

    cs.binary_changed = any(getattr(old, f) != getattr(new, f) for f in BINARY_FIELDS)
    cs.bindings_changed = _bindings_key(old) != _bindings_key(new)
    cs.routes_changed = _routes_key(old) != _routes_key(new)
    cs.stopped_changed = old.stopped != new.stopped
    return cs
