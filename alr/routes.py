from __future__ import annotations

import logging

from .errors import ConflictingBinding, NotFound
from .managers import RouteManager
from .models import LEGACY_SLOTS, RouteConfigLegacy, RouteConfigSet, RouteEntry

logit = logging.getLogger("alr")


class RouteReconciler:
    """Maps and unmaps routes so the observed mappings match the desired ones."""

    def __init__(self, routes: RouteManager):
        self.routes = routes

    def validate_route(self, route_id: str, excluded_app_id: str = "") -> str:
        """Ensure `route_id` is unmapped or mapped only to `excluded_app_id`."""
        if not route_id:
            return route_id
        mappings = self.routes.read_route_mappings_by_route(route_id)
        if not mappings:
            return route_id
        if len(mappings) == 1 and excluded_app_id and mappings[0].app == excluded_app_id:
            return route_id
        raise ConflictingBinding(route_id)

    def map_route(self, route_id: str, app_id: str, port: int | None = None) -> str:
        mapping_id = self.routes.create_route_mapping(route_id, app_id, port)
        logit.debug("Mapped route %s to app %s (mapping %s)", route_id, app_id, mapping_id)
        return mapping_id

    def unmap(self, mapping_id: str) -> None:
        """Delete a mapping; a mapping that is already gone is not an error."""
        if not mapping_id:
            return
        try:
            self.routes.delete_route_mapping(mapping_id)
        except NotFound:
            logit.debug("Route mapping %s already absent", mapping_id)

    # ------------------------------------------------------------------
    # Legacy single-slot schema
    # ------------------------------------------------------------------

    def reconcile_slot(self, old: RouteConfigLegacy, new: RouteConfigLegacy, slot: str, app_id: str) -> str:
        """Move one slot from the old to the new route id.

        Returns the mapping id the slot ends up with.
        """
        old_route, new_route = old.route(slot), new.route(slot)
        if old_route == new_route:
            return old.mapping_id(slot) if new_route else ""

        mapping_id = ""
        if new_route:
            mapping_id = self.map_route(new_route, app_id)
        if old_route:
            self.unmap(old.mapping_id(slot))
        return mapping_id

    def reconcile_legacy(
        self, old: RouteConfigLegacy | None, new: RouteConfigLegacy, app_id: str
    ) -> RouteConfigLegacy:
        old = old or RouteConfigLegacy()
        for slot in LEGACY_SLOTS:
            self.validate_route(new.route(slot), app_id)
        updated = new.model_copy()
        for slot in LEGACY_SLOTS:
            setattr(updated, f"{slot}_mapping_id", self.reconcile_slot(old, new, slot, app_id))
        return updated

    # ------------------------------------------------------------------
    # Multi-route set schema
    # ------------------------------------------------------------------

    def _create_entry(self, entry: RouteEntry, app_id: str) -> RouteEntry:
        self.validate_route(entry.route, app_id)
        mapping_id = self.map_route(entry.route, app_id, entry.port)
        mapping = self.routes.read_route_mapping(mapping_id)
        return RouteEntry(route=entry.route, port=mapping.port, mapping_id=mapping_id)

    def reconcile_set(self, observed: RouteConfigSet | None, desired: RouteConfigSet, app_id: str) -> RouteConfigSet:
        """Create desired-observed mappings and delete observed-desired ones.

        Entries present on both sides keep their observed mapping id and port,
        so applying the same desired set twice issues no further calls.
        """
        observed = observed or RouteConfigSet()
        current = {e.route: e for e in observed.routes}
        wanted = desired.route_ids()

        result: list[RouteEntry] = []
        for entry in desired.routes:
            if entry.route in current and current[entry.route].mapping_id:
                result.append(current[entry.route])
            else:
                result.append(self._create_entry(entry, app_id))

        for entry in observed.routes:
            if entry.route not in wanted:
                self.unmap(entry.mapping_id)

        return RouteConfigSet(routes=result)

    def migrate(self, legacy: RouteConfigLegacy, desired: RouteConfigSet, app_id: str) -> RouteConfigSet:
        """Move from the legacy schema to the set schema.

        A desired route matching a legacy slot inherits that slot's mapping
        instead of being mapped a second time.
        """
        inherited = {legacy.route(s): legacy.mapping_id(s) for s in LEGACY_SLOTS if legacy.route(s)}
        result: list[RouteEntry] = []
        for entry in desired.routes:
            mapping_id = inherited.get(entry.route, "")
            if mapping_id:
                mapping = self.routes.read_route_mapping(mapping_id)
                result.append(RouteEntry(route=entry.route, port=mapping.port, mapping_id=mapping_id))
            else:
                result.append(self._create_entry(entry, app_id))

        wanted = desired.route_ids()
        for slot in LEGACY_SLOTS:
            if legacy.route(slot) and legacy.route(slot) not in wanted:
                self.unmap(legacy.mapping_id(slot))
        return RouteConfigSet(routes=result)

    # ------------------------------------------------------------------
    # Read and delete paths
    # ------------------------------------------------------------------

    def refresh(
        self, config: RouteConfigLegacy | RouteConfigSet, app_id: str
    ) -> RouteConfigLegacy | RouteConfigSet:
        """Re-read mappings of `app_id` and drop entries that no longer exist."""
        mappings = self.routes.read_route_mappings_by_app(app_id)

        if isinstance(config, RouteConfigLegacy):
            by_route = {m.route: m for m in mappings}
            found = False
            refreshed = RouteConfigLegacy()
            for slot in LEGACY_SLOTS:
                m = by_route.get(config.route(slot)) if config.route(slot) else None
                if m is not None:
                    found = True
                    setattr(refreshed, slot, m.route)
                    setattr(refreshed, f"{slot}_mapping_id", m.mapping_id)
            return refreshed if found else config

        known = config.route_ids()
        return RouteConfigSet(
            routes=[RouteEntry(route=m.route, port=m.port, mapping_id=m.mapping_id) for m in mappings if m.route in known]
        )

    def unmap_all(self, config: RouteConfigLegacy | RouteConfigSet | None) -> None:
        if config is None:
            return
        if isinstance(config, RouteConfigLegacy):
            for slot in LEGACY_SLOTS:
                self.unmap(config.mapping_id(slot))
            return
        for entry in config.routes:
            self.unmap(entry.mapping_id)
