from __future__ import annotations

from . import db
from .errors import NotFound, ReconcileError
from .managers import AppManager

DEPOSED_APPLICATION = "application"


class DeposedTracker:
    """Keeps track of superseded applications until their deletion is confirmed.

    The deposed mapping (resource id -> kind) lives on the persisted
    `ResourceState`; every method returns a new mapping instead of mutating
    the one it was given.
    """

    def __init__(self, apps: AppManager):
        self.apps = apps

    @staticmethod
    def record(deposed: dict[str, str], resource_id: str, kind: str = DEPOSED_APPLICATION) -> dict[str, str]:
        out = dict(deposed)
        out[resource_id] = kind
        return out

    @staticmethod
    def forget(deposed: dict[str, str], resource_id: str) -> dict[str, str]:
        out = dict(deposed)
        out.pop(resource_id, None)
        return out

    def reconcile_on_read(self, deposed: dict[str, str]) -> dict[str, str]:
        """Drop the ids the platform confirms are gone; keep everything else."""
        out: dict[str, str] = {}
        for resource_id, kind in deposed.items():
            try:
                self.apps.read_app(resource_id)
            except NotFound:
                db.log_event("INFO", f"Deposed {kind} {resource_id} no longer exists", app_id=resource_id)
                continue
            except ReconcileError as err:
                db.log_event("WARN", f"Could not check deposed {kind} {resource_id}: {err}", app_id=resource_id)
            out[resource_id] = kind
        return out

    def finish_cleanup(self, deposed: dict[str, str]) -> dict[str, str]:
        """Delete deposed applications left behind by an earlier rollout."""
        out: dict[str, str] = {}
        for resource_id, kind in deposed.items():
            try:
                self.apps.delete_app(resource_id, recursive=True)
            except NotFound:
                pass
            except ReconcileError as err:
                db.log_event("WARN", f"Deleting deposed {kind} {resource_id} failed: {err}", app_id=resource_id)
                out[resource_id] = kind
                continue
            db.log_event("INFO", f"Deleted deposed {kind} {resource_id}", app_id=resource_id)
        return out
