from __future__ import annotations

import secrets
import time
from enum import Enum

from . import db
from .deposed import DeposedTracker
from .errors import InvalidRollout, ReconcileError
from .managers import AppManager
from .models import (
    ApplicationRecord,
    ApplicationSpec,
    ResourceState,
    RouteConfigLegacy,
    RouteConfigSet,
    RouteEntry,
)
from .provision import Provisioner
from .runtime import RolloutStatus, RuntimeState
from .settings import settings


class RolloutState(str, Enum):
    PREPARING = "preparing"
    VENERABLE_RENAMED = "venerable_renamed"
    REPLACEMENT_CREATED = "replacement_created"
    ROUTES_REBOUND = "routes_rebound"
    SCALING_EXCHANGE = "scaling_exchange"
    VENERABLE_DELETING = "venerable_deleting"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    RolloutState.PREPARING: {RolloutState.VENERABLE_RENAMED},
    RolloutState.VENERABLE_RENAMED: {RolloutState.REPLACEMENT_CREATED},
    RolloutState.REPLACEMENT_CREATED: {RolloutState.ROUTES_REBOUND},
    RolloutState.ROUTES_REBOUND: {RolloutState.SCALING_EXCHANGE},
    RolloutState.SCALING_EXCHANGE: {RolloutState.VENERABLE_DELETING},
    RolloutState.VENERABLE_DELETING: {RolloutState.DONE},
}


class BlueGreenOrchestrator:
    """Replaces an application with a freshly created copy.

    The existing ("venerable") application keeps serving while the
    replacement is created next to it; instances are then exchanged one at a
    time before the venerable application is deleted. Once the replacement
    exists the venerable id is recorded as deposed, so a crash anywhere after
    that point is cleaned up by a later reconciliation.
    """

    def __init__(
        self,
        apps: AppManager,
        provisioner: Provisioner,
        deposed: DeposedTracker,
        runtime: RuntimeState | None = None,
        drain_pause_s: float | None = None,
        venerable_suffix: str | None = None,
    ):
        self.apps = apps
        self.provisioner = provisioner
        self.routes = provisioner.routes
        self.deposed = deposed
        self.runtime = runtime or RuntimeState()
        self.drain_pause_s = settings.drain_pause_s if drain_pause_s is None else drain_pause_s
        self.venerable_suffix = settings.venerable_suffix if venerable_suffix is None else venerable_suffix

    def run(self, observed: ResourceState, desired: ApplicationSpec) -> ResourceState:
        st = RolloutStatus(
            id=secrets.token_hex(6),
            app_name=desired.name,
            venerable_id=observed.id,
            state=RolloutState.PREPARING.value,
            message=f"Preparing blue-green rollout of {desired.name}",
        )
        self.runtime.upsert_rollout(st)

        try:
            venerable = self.apps.read_app(observed.id)
            venerable = self.apps.update_app(venerable.id, {"name": venerable.name + self.venerable_suffix})
            self._advance(st, RolloutState.VENERABLE_RENAMED, f"Renamed {observed.id} to {venerable.name}")

            applied, replacement = self.provisioner.create(desired, venerable_id=venerable.id, instances=1)
            st.replacement_id = replacement.id
            self._advance(st, RolloutState.REPLACEMENT_CREATED, f"Created replacement {replacement.id}")
        except Exception as err:
            self._fail(st, err)
            raise

        # Checkpoint: from here on the venerable application must never be
        # forgotten until its deletion succeeded.
        state = ResourceState(
            id=replacement.id,
            spec=applied.model_copy(
                update={"instances": replacement.instances or 1, "route": _mapped_only(applied.route)}
            ),
            record=replacement,
            deposed=self.deposed.record(observed.deposed, venerable.id),
        )

        try:
            self._rebind_routes(state, applied.route, venerable.id)
            self._advance(st, RolloutState.ROUTES_REBOUND, "Routes mapped to replacement")

            self._advance(st, RolloutState.SCALING_EXCHANGE, "Exchanging instances")
            self._exchange(state, venerable, desired)

            self._advance(st, RolloutState.VENERABLE_DELETING, f"Deleting venerable {venerable.id}")
            self.apps.delete_app(venerable.id, recursive=True)
            state.deposed = self.deposed.forget(state.deposed, venerable.id)

            state.record = self.apps.read_app(replacement.id)
            self._advance(st, RolloutState.DONE, "Rollout completed.")
        except Exception as err:
            self._fail(st, err)
            if isinstance(err, ReconcileError):
                raise err.with_state(state)
            raise

        return state

    def _rebind_routes(
        self, state: ResourceState, cfg: RouteConfigLegacy | RouteConfigSet | None, venerable_id: str
    ) -> None:
        """Map the default/live slots or the route set to the replacement.

        `state.spec.route` gains each mapping as soon as it exists, so a
        failure part way leaves the unmapped rest to the next update.
        """
        app_id = state.id
        if isinstance(cfg, RouteConfigLegacy):
            for slot in ("default_route", "live_route"):
                route_id = self.routes.validate_route(cfg.route(slot), venerable_id)
                if route_id:
                    mapping_id = self.routes.map_route(route_id, app_id)
                    mapped = state.spec.route.model_copy(update={slot: route_id, f"{slot}_mapping_id": mapping_id})
                    state.spec = state.spec.model_copy(update={"route": mapped})
            return

        if isinstance(cfg, RouteConfigSet):
            entries: list[RouteEntry] = []
            for entry in cfg.routes:
                self.routes.validate_route(entry.route, venerable_id)
                mapping_id = self.routes.map_route(entry.route, app_id, entry.port)
                entries.append(RouteEntry(route=entry.route, port=entry.port, mapping_id=mapping_id))
                state.spec = state.spec.model_copy(update={"route": RouteConfigSet(routes=list(entries))})
                entries[-1] = entries[-1].model_copy(
                    update={"port": self.routes.routes.read_route_mapping(mapping_id).port}
                )
            state.spec = state.spec.model_copy(update={"route": RouteConfigSet(routes=entries)})

    def _exchange(self, state: ResourceState, venerable: ApplicationRecord, desired: ApplicationSpec) -> None:
        """Scale the replacement up and the venerable down in lockstep.

        Capacity is added before it is removed; the venerable application is
        kept at one instance until it is deleted. `state.spec.instances`
        follows every count the replacement was set to.
        """
        app_id = state.id
        target = desired.instances
        new_count = state.spec.instances
        old_count = venerable.instances or 1

        while new_count < target or old_count > 1:
            if new_count < target:
                new_count += 1
                db.log_event("INFO", f"Scaling up app {app_id} to instance count {new_count}", app_id=app_id)
                self._scale_replacement(state, new_count)
                if not desired.stopped:
                    self.apps.wait_for_app_to_start(app_id, desired.timeout)

            if old_count > 1:
                old_count -= 1
                db.log_event("INFO", f"Scaling down venerable app {venerable.id} to instance count {old_count}", app_id=venerable.id)
                self.apps.update_app(venerable.id, {"instances": old_count})
                if not venerable.stopped:
                    time.sleep(self.drain_pause_s)

        if target < new_count:
            self._scale_replacement(state, target)

    def _scale_replacement(self, state: ResourceState, count: int) -> None:
        self.apps.update_app(state.id, {"instances": count})
        state.spec = state.spec.model_copy(update={"instances": count})

    def _advance(self, st: RolloutStatus, new_state: RolloutState, message: str) -> None:
        current = RolloutState(st.state)
        if new_state not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidRollout(f"Cannot transition from {current.value} to {new_state.value}")
        st.state = new_state.value
        st.message = message
        self.runtime.upsert_rollout(st)
        db.log_event("INFO", message, app_name=st.app_name, app_id=st.replacement_id or st.venerable_id)

    def _fail(self, st: RolloutStatus, err: Exception) -> None:
        st.state = RolloutState.FAILED.value
        st.message = f"Rollout failed: {err}"
        self.runtime.upsert_rollout(st)
        db.log_event("ERROR", st.message, app_name=st.app_name, app_id=st.replacement_id or st.venerable_id)


def _mapped_only(cfg: RouteConfigLegacy | RouteConfigSet | None) -> RouteConfigLegacy | RouteConfigSet | None:
    """Keep only the slots and entries that carry a mapping id."""
    if isinstance(cfg, RouteConfigLegacy):
        kept = RouteConfigLegacy()
        for slot in ("default_route", "stage_route", "live_route"):
            if cfg.mapping_id(slot):
                setattr(kept, slot, cfg.route(slot))
                setattr(kept, f"{slot}_mapping_id", cfg.mapping_id(slot))
        return kept
    if isinstance(cfg, RouteConfigSet):
        return RouteConfigSet(routes=[e for e in cfg.routes if e.mapping_id])
    return cfg
