from __future__ import annotations

import logging

from . import db
from .bindings import BindingReconciler
from .errors import InvalidConfiguration, ReconcileError
from .managers import AppManager, ArtifactResolver, RouteManager
from .models import ApplicationRecord, ApplicationSpec, RouteConfigLegacy, RouteConfigSet
from .routes import RouteReconciler
from .upload import UploadCoordinator, UploadTask, drain, remove_artifact

logit = logging.getLogger("alr")


class Provisioner:
    """The create path shared by brand-new applications and blue-green replacements."""

    def __init__(self, apps: AppManager, routes: RouteManager, resolver: ArtifactResolver):
        self.apps = apps
        self.routes = RouteReconciler(routes)
        self.bindings = BindingReconciler(apps)
        self.uploads = UploadCoordinator(apps)
        self.resolver = resolver

    def _validate_routes(self, spec: ApplicationSpec, venerable_id: str) -> None:
        """Pre-flight check that no desired route is mapped elsewhere."""
        cfg = spec.route
        if isinstance(cfg, RouteConfigLegacy):
            self.routes.validate_route(cfg.default_route, venerable_id)
            self.routes.validate_route(cfg.stage_route, "")
            self.routes.validate_route(cfg.live_route, venerable_id)
            if bool(cfg.stage_route) != bool(cfg.live_route):
                raise InvalidConfiguration(
                    "both 'stage_route' and 'live_route' need to be provided to deploy the app using blue-green routing"
                )
        elif isinstance(cfg, RouteConfigSet):
            for entry in cfg.routes:
                self.routes.validate_route(entry.route, venerable_id)

    def _map_routes(self, spec: ApplicationSpec, app_id: str, replacement: bool) -> ApplicationSpec:
        cfg = spec.route
        if cfg is None:
            return spec

        if isinstance(cfg, RouteConfigLegacy):
            mapped = RouteConfigLegacy(
                default_route=cfg.default_route, stage_route=cfg.stage_route, live_route=cfg.live_route
            )
            if replacement:
                # Only the stage route goes to a replacement; default and live
                # routes move over once it is running.
                if cfg.stage_route:
                    mapped.stage_route_mapping_id = self.routes.map_route(cfg.stage_route, app_id)
            else:
                if cfg.default_route:
                    mapped.default_route_mapping_id = self.routes.map_route(cfg.default_route, app_id)
                if cfg.live_route:
                    mapped.live_route_mapping_id = self.routes.map_route(cfg.live_route, app_id)
            return spec.model_copy(update={"route": mapped})

        if replacement:
            unmapped = [r.model_copy(update={"mapping_id": ""}) for r in cfg.routes]
            return spec.model_copy(update={"route": RouteConfigSet(routes=unmapped)})
        return spec.model_copy(update={"route": self.routes.reconcile_set(None, cfg, app_id)})

    def create(
        self, spec: ApplicationSpec, venerable_id: str = "", instances: int | None = None
    ) -> tuple[ApplicationSpec, ApplicationRecord]:
        """Create, populate and start an application.

        With `venerable_id` set the application replaces that one in a
        blue-green rollout. Returns the applied spec (mapping and binding ids
        filled in) and the observed record. A failure after the application
        exists deletes it again before the original error is re-raised.
        """
        self._validate_routes(spec, venerable_id)
        artifact = self.resolver.resolve(spec)

        fields = spec.app_fields()
        if instances is not None:
            fields["instances"] = instances

        try:
            record = self.apps.create_app(fields)
        except ReconcileError:
            if artifact.cleanup:
                remove_artifact(artifact.path)
            raise
        db.log_event("INFO", f"Created app {record.name} ({record.id})", app_name=record.name, app_id=record.id)

        task = UploadTask()
        try:
            task = self.uploads.dispatch(record.id, artifact, spec.add_content)

            applied = spec
            if spec.service_bindings:
                bound = self.bindings.add(record.id, spec.service_bindings)
                applied = applied.model_copy(update={"service_bindings": bound})
                logit.debug("Created service bindings: %s", bound)

            applied = self._map_routes(applied, record.id, replacement=bool(venerable_id))

            task.join()

            if not spec.stopped:
                if spec.is_docker:
                    self.apps.start_docker_app(record.id, spec.timeout)
                else:
                    self.apps.start_app(record.id, spec.timeout)

            record = self.apps.read_app(record.id)
        except Exception as err:
            # The upload must not race the deletion below.
            drain(task, err, record.id)
            self._discard(record, err)
            raise

        logit.debug("Created app state: %s", record)
        return applied, record

    def _discard(self, record: ApplicationRecord, cause: Exception) -> None:
        try:
            self.apps.delete_app(record.id, recursive=True)
        except ReconcileError as err:
            db.log_event(
                "ERROR",
                f"Error while creating app {record.name} ({record.id}): {cause}; deleting it failed too: {err}",
                app_name=record.name,
                app_id=record.id,
            )
            return
        db.log_event(
            "ERROR",
            f"Error while creating app {record.name} ({record.id}), the application has been deleted: {cause}",
            app_name=record.name,
            app_id=record.id,
        )
