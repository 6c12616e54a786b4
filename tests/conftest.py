import itertools
import os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from alr import db  # noqa: E402
from alr.errors import NotFound  # noqa: E402
from alr.managers import Artifact  # noqa: E402
from alr.models import ApplicationRecord, ApplicationSpec, AppState, PackageState, RouteMapping  # noqa: E402
from alr.reconciler import Reconciler  # noqa: E402
from alr.runtime import RuntimeState  # noqa: E402

RECORD_FIELDS = set(ApplicationRecord.model_fields) - {"id", "state", "package_state"}


class FakePlatform:
    """In-memory control-plane implementing both AppManager and RouteManager.

    Every call is appended to `calls` as `(method, *args)`. `fail_on` makes a
    method raise once, optionally after letting a number of calls succeed.
    """

    def __init__(self):
        self.apps: dict[str, ApplicationRecord] = {}
        self.bindings: dict[str, tuple[str, str, dict | None]] = {}
        self.mappings: dict[str, RouteMapping] = {}
        self.uploads: list[tuple[str, str]] = []
        self.calls: list[tuple] = []
        self._failures: dict[str, list] = {}
        self._seq = itertools.count(1)

    def fail_on(self, method: str, err: Exception, after: int = 0) -> None:
        self._failures[method] = [after, err]

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def calls_to(self, method: str) -> list[tuple]:
        return [c[1:] for c in self.calls if c[0] == method]

    def _call(self, method, *args):
        self.calls.append((method, *args))
        pending = self._failures.get(method)
        if pending is None:
            return
        if pending[0] > 0:
            pending[0] -= 1
            return
        del self._failures[method]
        raise pending[1]

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._seq)}"

    def _get(self, app_id: str) -> ApplicationRecord:
        if app_id not in self.apps:
            raise NotFound(message=f"app {app_id} not found")
        return self.apps[app_id]

    # --- AppManager ---

    def create_app(self, fields):
        self._call("create_app", dict(fields))
        app_id = self._next("app")
        attrs = {k: v for k, v in fields.items() if k in RECORD_FIELDS}
        self.apps[app_id] = ApplicationRecord(id=app_id, **attrs)
        return self.apps[app_id]

    def read_app(self, app_id):
        self._call("read_app", app_id)
        return self._get(app_id)

    def update_app(self, app_id, fields):
        self._call("update_app", app_id, dict(fields))
        rec = self._get(app_id)
        attrs = {k: v for k, v in fields.items() if k in RECORD_FIELDS}
        self.apps[app_id] = rec.model_copy(update=attrs)
        return self.apps[app_id]

    def delete_app(self, app_id, recursive=False):
        self._call("delete_app", app_id, recursive)
        self._get(app_id)
        del self.apps[app_id]
        if recursive:
            self.bindings = {k: v for k, v in self.bindings.items() if v[0] != app_id}
            self.mappings = {k: v for k, v in self.mappings.items() if v.app != app_id}

    def upload_app(self, app_id, path, add_content):
        self._call("upload_app", app_id, path)
        self.uploads.append((app_id, path))
        # New bits flag the package for staging.
        self.apps[app_id] = self._get(app_id).model_copy(update={"package_state": PackageState.PENDING})

    def _set_state(self, app_id, state, package_state=None):
        update = {"state": state}
        if package_state is not None:
            update["package_state"] = package_state
        self.apps[app_id] = self._get(app_id).model_copy(update=update)

    def start_app(self, app_id, timeout_s):
        self._call("start_app", app_id)
        self._set_state(app_id, AppState.STARTED, PackageState.STAGED)

    def start_docker_app(self, app_id, timeout_s):
        self._call("start_docker_app", app_id)
        self._set_state(app_id, AppState.STARTED, PackageState.STAGED)

    def stop_app(self, app_id, timeout_s):
        self._call("stop_app", app_id)
        self._set_state(app_id, AppState.STOPPED)

    def wait_for_app_to_start(self, app_id, timeout_s):
        self._call("wait_for_app_to_start", app_id)
        self._get(app_id)

    def restage_app(self, app_id, timeout_s):
        self._call("restage_app", app_id)
        self._set_state(app_id, self._get(app_id).state, PackageState.STAGED)

    def create_service_binding(self, app_id, service_instance, params=None):
        self._call("create_service_binding", app_id, service_instance)
        binding_id = self._next("binding")
        self.bindings[binding_id] = (app_id, service_instance, params)
        return binding_id

    def delete_service_binding(self, binding_id):
        self._call("delete_service_binding", binding_id)
        if binding_id not in self.bindings:
            raise NotFound()
        del self.bindings[binding_id]

    # --- RouteManager ---

    def read_route_mappings_by_app(self, app_id):
        self._call("read_route_mappings_by_app", app_id)
        return [m for m in self.mappings.values() if m.app == app_id]

    def read_route_mappings_by_route(self, route_id):
        self._call("read_route_mappings_by_route", route_id)
        return [m for m in self.mappings.values() if m.route == route_id]

    def read_route_mapping(self, mapping_id):
        self._call("read_route_mapping", mapping_id)
        if mapping_id not in self.mappings:
            raise NotFound()
        return self.mappings[mapping_id]

    def create_route_mapping(self, route_id, app_id, port=None):
        self._call("create_route_mapping", route_id, app_id, port)
        mapping_id = self._next("mapping")
        self.mappings[mapping_id] = RouteMapping(mapping_id=mapping_id, route=route_id, app=app_id, port=port or 8080)
        return mapping_id

    def delete_route_mapping(self, mapping_id):
        self._call("delete_route_mapping", mapping_id)
        if mapping_id not in self.mappings:
            raise NotFound()
        del self.mappings[mapping_id]

    # --- helpers for assertions ---

    def routes_of(self, route_id: str) -> list[str]:
        return [m.app for m in self.mappings.values() if m.route == route_id]


class StaticResolver:
    """Resolves every source to a fixed local path without touching the network."""

    def resolve(self, spec):
        if spec.docker_image:
            return Artifact(image=spec.docker_image)
        return Artifact(path="/srv/artifacts/app.zip")


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "alr.db")))
    db.init_db()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def runtime():
    return RuntimeState()


@pytest.fixture
def reconciler(platform, runtime):
    return Reconciler(
        platform,
        platform,
        resolver=StaticResolver(),
        runtime=runtime,
        restage_settle_s=0,
        drain_pause_s=0,
    )


@pytest.fixture
def make_spec():
    def _make(**overrides):
        data = {"name": "web", "space": "space-1", "url": "file:///srv/artifacts/app.zip"}
        data.update(overrides)
        return ApplicationSpec(**data)

    return _make
