from __future__ import annotations

import time
from typing import Any

from . import db
from .artifacts import SourceResolver
from .bindings import BindingReconciler
from .changes import ChangeSet, classify
from .deposed import DeposedTracker
from .errors import NotFound, PartialBindingFailure, ReconcileError
from .managers import AppManager, ArtifactResolver, RouteManager
from .models import (
    APP_FIELDS,
    ApplicationRecord,
    ApplicationSpec,
    AppState,
    PackageState,
    ResourceState,
    RouteConfigLegacy,
    RouteConfigSet,
)
from .provision import Provisioner
from .rollouts import BlueGreenOrchestrator
from .runtime import RuntimeState
from .settings import settings
from .upload import UploadTask, drain

# Attributes mirrored from the observed record back into the applied spec,
# but only where the spec sets them; unset attributes stay platform-computed.
MIRRORED_FIELDS = tuple(f for f in APP_FIELDS if f not in ("docker_credentials",))


class Reconciler:
    """Drives one application resource towards its desired configuration.

    Entry points return a fresh `ResourceState` for the caller to persist.
    Errors that leave remote changes behind carry the partially applied state
    in `err.state`.
    """

    def __init__(
        self,
        apps: AppManager,
        routes: RouteManager,
        resolver: ArtifactResolver | None = None,
        runtime: RuntimeState | None = None,
        restage_settle_s: float | None = None,
        drain_pause_s: float | None = None,
    ):
        self.apps = apps
        self.provisioner = Provisioner(apps, routes, resolver or SourceResolver())
        self.routes = self.provisioner.routes
        self.bindings = self.provisioner.bindings
        self.uploads = self.provisioner.uploads
        self.deposed = DeposedTracker(apps)
        self.blue_green = BlueGreenOrchestrator(
            apps, self.provisioner, self.deposed, runtime=runtime, drain_pause_s=drain_pause_s
        )
        self.restage_settle_s = settings.restage_settle_s if restage_settle_s is None else restage_settle_s

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def reconcile(self, desired: ApplicationSpec, observed: ResourceState | None = None) -> ResourceState:
        if observed is None:
            return self.create(desired)
        return self.update(observed, desired)

    def create(self, desired: ApplicationSpec) -> ResourceState:
        applied, record = self.provisioner.create(desired)
        return ResourceState(id=record.id, spec=applied, record=record)

    def read(self, observed: ResourceState) -> ResourceState | None:
        """Refresh the observed state; `None` means the application is gone."""
        deposed = self.deposed.reconcile_on_read(observed.deposed)
        try:
            record = self.apps.read_app(observed.id)
        except NotFound:
            db.log_event("WARN", f"Application {observed.id} no longer exists", app_name=observed.spec.name, app_id=observed.id)
            return None

        spec = _mirror(observed.spec, record)
        if spec.route is not None:
            spec = spec.model_copy(update={"route": self.routes.refresh(spec.route, record.id)})
        return ResourceState(id=record.id, spec=spec, record=record, deposed=deposed)

    def update(self, observed: ResourceState, desired: ApplicationSpec) -> ResourceState:
        deposed = self.deposed.finish_cleanup(observed.deposed)
        observed = observed.model_copy(update={"deposed": deposed})

        changes = classify(observed.spec, desired)

        if changes.force_new:
            db.log_event("INFO", f"Source kind changed, replacing app {observed.id}", app_name=desired.name, app_id=observed.id)
            leftover = self.delete(observed)
            created = self.create(desired)
            created.deposed = leftover
            return created

        if changes.empty:
            carried = desired.model_copy(
                update={
                    "service_bindings": BindingReconciler.merge(
                        desired.service_bindings, observed.spec.service_bindings, []
                    ),
                    "route": observed.spec.route,
                }
            )
            return observed.model_copy(update={"spec": carried})

        blue_green = desired.blue_green_enabled and (
            changes.restart or changes.bindings_changed or changes.binary_changed
        )
        if blue_green:
            return self.blue_green.run(observed, desired)
        return self._standard_update(observed, desired, changes)

    def delete(self, observed: ResourceState) -> dict[str, str]:
        """Delete the application; returns deposed resources that still linger."""
        deposed = self.deposed.finish_cleanup(observed.deposed)
        self.bindings.remove(observed.spec.service_bindings)
        self.routes.unmap_all(observed.spec.route)
        try:
            self.apps.delete_app(observed.id, recursive=False)
        except NotFound:
            db.log_event(
                "INFO",
                f"Application with ID '{observed.id}' does not exist. App resource will be deleted from state",
                app_name=observed.spec.name,
                app_id=observed.id,
            )
        except ReconcileError as err:
            db.log_event(
                "WARN",
                f"App resource will be deleted from state although deleting app with ID '{observed.id}' "
                f"returned an error: {err}",
                app_name=observed.spec.name,
                app_id=observed.id,
            )
        else:
            db.log_event("INFO", f"Deleted app {observed.spec.name} ({observed.id})", app_name=observed.spec.name, app_id=observed.id)
        return deposed

    # ------------------------------------------------------------------
    # Standard (in-place) update
    # ------------------------------------------------------------------

    def _standard_update(self, observed: ResourceState, desired: ApplicationSpec, changes: ChangeSet) -> ResourceState:
        app_id = observed.id
        state = observed.model_copy()
        restage, restart = changes.restage, changes.restart
        task = UploadTask()

        try:
            if changes.update:
                state.record = self.apps.update_app(app_id, changes.delta)
                state.spec = state.spec.model_copy(update=changes.delta)
                db.log_event("INFO", f"Updated app {desired.name} ({', '.join(sorted(changes.delta))})", app_name=desired.name, app_id=app_id)

            if changes.binary_changed:
                artifact = self.provisioner.resolver.resolve(desired)
                task = self.uploads.dispatch(app_id, artifact, desired.add_content)

            if changes.bindings_changed:
                state.spec = self._update_bindings(state, desired)
                restage = True
            else:
                state.spec = state.spec.model_copy(
                    update={
                        "service_bindings": BindingReconciler.merge(
                            desired.service_bindings, observed.spec.service_bindings, []
                        )
                    }
                )

            if changes.routes_changed:
                state.spec = state.spec.model_copy(update={"route": self._update_routes(observed.spec.route, desired, app_id)})

            task.join()
            if changes.binary_changed:
                state.spec = state.spec.model_copy(
                    update={k: getattr(desired, k) for k in ("url", "git", "github_release", "add_content")}
                )

            current = self.apps.read_app(app_id)
            if changes.binary_changed or restage:
                # Give the platform time to flag the package before checking it.
                time.sleep(self.restage_settle_s)
                current = self.apps.read_app(app_id)
                if current.package_state != PackageState.PENDING:
                    restage = True
                else:
                    # The upload already flagged the package for staging; a
                    # restart makes it happen now.
                    restage, restart = False, True

            if restage:
                self.apps.restage_app(app_id, desired.timeout)
                if current.state == AppState.STARTED:
                    self.apps.wait_for_app_to_start(app_id, desired.timeout)
            elif restart and not desired.stopped:
                self.apps.stop_app(app_id, desired.timeout)
                self.apps.start_app(app_id, desired.timeout)

            if changes.stopped_changed:
                if desired.stopped:
                    self.apps.stop_app(app_id, desired.timeout)
                elif desired.is_docker:
                    self.apps.start_docker_app(app_id, desired.timeout)
                else:
                    self.apps.start_app(app_id, desired.timeout)

            state.record = self.apps.read_app(app_id)
        except Exception as err:
            drain(task, err, app_id)
            if isinstance(err, ReconcileError):
                raise err.with_state(state)
            raise

        state.spec = desired.model_copy(
            update={"service_bindings": state.spec.service_bindings, "route": state.spec.route}
        )
        return state

    def _update_bindings(self, state: ResourceState, desired: ApplicationSpec) -> ApplicationSpec:
        current = state.spec.service_bindings
        to_delete, to_add = self.bindings.diff(current, desired.service_bindings)
        db.log_event(
            "INFO",
            f"Service bindings to be deleted: {len(to_delete)}, to be added: {len(to_add)}",
            app_name=desired.name,
            app_id=state.id,
        )

        self.bindings.remove(to_delete)
        removed = {b.service_instance for b in to_delete}
        kept = [b for b in current if b.service_instance not in removed]
        state.spec = state.spec.model_copy(update={"service_bindings": kept})

        try:
            added = self.bindings.add(state.id, to_add)
        except PartialBindingFailure as err:
            state.spec = state.spec.model_copy(update={"service_bindings": kept + err.created})
            raise

        return state.spec.model_copy(
            update={"service_bindings": BindingReconciler.merge(desired.service_bindings, kept, added)}
        )

    def _update_routes(
        self, old: RouteConfigLegacy | RouteConfigSet | None, desired: ApplicationSpec, app_id: str
    ) -> RouteConfigLegacy | RouteConfigSet | None:
        new = desired.route
        if new is None:
            self.routes.unmap_all(old)
            return None

        if isinstance(new, RouteConfigLegacy):
            if isinstance(old, RouteConfigSet):
                self.routes.unmap_all(old)
                old = None
            return self.routes.reconcile_legacy(old, new, app_id)

        if isinstance(old, RouteConfigLegacy):
            db.log_event("INFO", f"Migrating from legacy route slots to a route set (app={app_id})", app_id=app_id)
            return self.routes.migrate(old, new, app_id)
        return self.routes.reconcile_set(old, new, app_id)


def _mirror(spec: ApplicationSpec, record: ApplicationRecord) -> ApplicationSpec:
    """Copy observed attributes over the ones the spec sets, for drift detection."""
    update: dict[str, Any] = {"stopped": record.stopped}
    for name in MIRRORED_FIELDS:
        if getattr(spec, name) is None:
            continue
        value = getattr(record, name, None)
        if value is not None:
            update[name] = value
    return spec.model_copy(update=update)
