from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query

from alr import db
from alr.cfclient import CloudControllerClient
from alr.errors import (
    ArtifactError,
    ConflictingBinding,
    InvalidConfiguration,
    ReconcileError,
    TimeoutExceeded,
)
from alr.models import ApplicationSpec, ResourceState
from alr.reconciler import Reconciler
from alr.runtime import RuntimeState
from alr.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Application Lifecycle Reconciler", version="0.1.0")
runtime = RuntimeState()

_reconciler: Reconciler | None = None


def get_reconciler() -> Reconciler:
    global _reconciler
    if _reconciler is None:
        client = CloudControllerClient()
        _reconciler = Reconciler(client, client, runtime=runtime)
    return _reconciler


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    db.log_event("INFO", "Reconciler API started")


def _load(key: str) -> ResourceState | None:
    row = db.get_resource(key)
    if row is None:
        return None
    return ResourceState.model_validate_json(row.state_json)


def _save(key: str, state: ResourceState) -> None:
    db.save_resource(key, state.id, state.model_dump_json())


def _error_status(err: ReconcileError) -> int:
    if isinstance(err, ConflictingBinding):
        return 409
    if isinstance(err, (InvalidConfiguration, ArtifactError)):
        return 422
    if isinstance(err, TimeoutExceeded):
        return 504
    return 502


def _fail(key: str, err: ReconcileError) -> HTTPException:
    # Remote changes made before the failure must not be forgotten.
    if err.state is not None:
        _save(key, err.state)
    detail: dict[str, Any] = {"error": type(err).__name__, "message": str(err)}
    if err.state is not None:
        detail["app_id"] = err.state.id
        detail["deposed"] = err.state.deposed
    return HTTPException(status_code=_error_status(err), detail=detail)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/apps")
def list_apps() -> list[dict]:
    out = []
    for row in db.list_resources():
        state = ResourceState.model_validate_json(row.state_json)
        out.append(
            {
                "key": row.key,
                "app_id": row.app_id,
                "name": state.spec.name,
                "state": state.record.state.value if state.record else None,
                "deposed": state.deposed,
                "updated_at": row.updated_at,
            }
        )
    return out


@app.put("/apps/{key}")
def apply_app(key: str, spec: ApplicationSpec, rec: Reconciler = Depends(get_reconciler)) -> dict:
    """Create the application, or bring an existing one to `spec`."""
    with runtime.resource_lock(key):
        observed = _load(key)
        try:
            state = rec.reconcile(spec, observed)
        except ReconcileError as err:
            raise _fail(key, err) from err
        _save(key, state)
    return state.model_dump(mode="json")


@app.get("/apps/{key}")
def read_app(key: str, rec: Reconciler = Depends(get_reconciler)) -> dict:
    with runtime.resource_lock(key):
        observed = _load(key)
        if observed is None:
            raise HTTPException(status_code=404, detail="Unknown application")
        try:
            state = rec.read(observed)
        except ReconcileError as err:
            raise _fail(key, err) from err
        if state is None:
            db.delete_resource(key)
            raise HTTPException(status_code=404, detail="Application no longer exists")
        _save(key, state)
    return state.model_dump(mode="json")


@app.delete("/apps/{key}")
def delete_app(key: str, rec: Reconciler = Depends(get_reconciler)) -> dict:
    with runtime.resource_lock(key):
        observed = _load(key)
        if observed is None:
            raise HTTPException(status_code=404, detail="Unknown application")
        try:
            leftover = rec.delete(observed)
        except ReconcileError as err:
            raise _fail(key, err) from err
        if leftover:
            db.log_event(
                "WARN",
                f"Deposed resources could not be deleted: {', '.join(sorted(leftover))}",
                app_name=observed.spec.name,
                app_id=observed.id,
            )
        db.delete_resource(key)
    return {"ok": True, "app_id": observed.id, "deposed": leftover}


@app.get("/rollouts")
def list_rollouts() -> list[dict]:
    return [asdict(r) for r in runtime.list_rollouts()]


@app.get("/rollouts/{rollout_id}")
def get_rollout(rollout_id: str) -> dict:
    st = runtime.get_rollout(rollout_id)
    if not st:
        raise HTTPException(status_code=404, detail="Unknown rollout")
    return asdict(st)


@app.get("/events")
def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
    return db.latest_events(limit=limit)
