from __future__ import annotations

import logging

from .errors import NotFound, PartialBindingFailure, ReconcileError
from .managers import AppManager
from .models import ServiceBinding

logit = logging.getLogger("alr")


class BindingReconciler:
    """Creates and removes service bindings of one application."""

    def __init__(self, apps: AppManager):
        self.apps = apps

    @staticmethod
    def diff(
        old: list[ServiceBinding], new: list[ServiceBinding]
    ) -> tuple[list[ServiceBinding], list[ServiceBinding]]:
        """Return (to_delete, to_add) keyed on the service instance.

        Binding ids are only known for existing bindings, so they take no
        part in the comparison. Changed parameters rebind the instance.
        """
        old_by_instance = {b.service_instance: b for b in old}
        new_by_instance = {b.service_instance: b for b in new}

        to_delete = [
            b
            for b in old
            if b.service_instance not in new_by_instance
            or (new_by_instance[b.service_instance].params or {}) != (b.params or {})
        ]
        to_add = [
            b
            for b in new
            if b.service_instance not in old_by_instance
            or (old_by_instance[b.service_instance].params or {}) != (b.params or {})
        ]
        return to_delete, to_add

    def add(self, app_id: str, entries: list[ServiceBinding]) -> list[ServiceBinding]:
        """Bind every entry and return them stamped with their binding ids.

        Stops at the first failure; bindings created up to that point are not
        rolled back and travel with the raised `PartialBindingFailure`.
        """
        bound: list[ServiceBinding] = []
        for entry in entries:
            try:
                binding_id = self.apps.create_service_binding(app_id, entry.service_instance, entry.params)
            except ReconcileError as err:
                raise PartialBindingFailure(bound, err) from err
            bound.append(entry.model_copy(update={"binding_id": binding_id}))
            logit.debug("Created binding with id '%s' for service instance '%s'.", binding_id, entry.service_instance)
        return bound

    def remove(self, entries: list[ServiceBinding]) -> None:
        """Delete the bindings of `entries`; one that is already gone is skipped."""
        for entry in entries:
            if not entry.binding_id:
                logit.debug(
                    "Ignoring binding for service instance '%s' as no corresponding binding id was found.",
                    entry.service_instance,
                )
                continue
            logit.debug("Deleting binding with id '%s' for service instance '%s'.", entry.binding_id, entry.service_instance)
            try:
                self.apps.delete_service_binding(entry.binding_id)
            except NotFound:
                logit.debug("Binding with id '%s' already absent.", entry.binding_id)

    @staticmethod
    def merge(
        desired: list[ServiceBinding], current: list[ServiceBinding], added: list[ServiceBinding]
    ) -> list[ServiceBinding]:
        """Stamp the desired list with binding ids from kept and added bindings."""
        ids = {b.service_instance: b.binding_id for b in current}
        ids.update({b.service_instance: b.binding_id for b in added})
        return [b.model_copy(update={"binding_id": ids.get(b.service_instance, "")}) for b in desired]
