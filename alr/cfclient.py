from __future__ import annotations

import logging
import os
import tempfile
import time
import zipfile
from typing import Any, Callable

import httpx

from .errors import NotFound, PlatformError, ReconcileError, TimeoutExceeded
from .models import AddContent, ApplicationRecord, AppState, PackageState, RouteMapping
from .settings import settings

logit = logging.getLogger("alr")

# ApplicationSpec attribute -> field name used by the platform API.
API_FIELD_NAMES = {
    "space": "space_guid",
    "stack": "stack_guid",
    "environment": "environment_json",
}


def to_api_fields(fields: dict[str, Any]) -> dict[str, Any]:
    out = {API_FIELD_NAMES.get(k, k): v for k, v in fields.items()}
    if "docker_image" in fields:
        out["diego"] = True
    return out


def record_from_resource(resource: dict) -> ApplicationRecord:
    entity = resource.get("entity", {})
    return ApplicationRecord(
        id=resource["metadata"]["guid"],
        name=entity.get("name", ""),
        space=entity.get("space_guid", ""),
        instances=entity.get("instances"),
        memory=entity.get("memory"),
        disk_quota=entity.get("disk_quota"),
        stack=entity.get("stack_guid"),
        buildpack=entity.get("buildpack"),
        command=entity.get("command"),
        enable_ssh=entity.get("enable_ssh"),
        ports=sorted(entity.get("ports") or []),
        health_check_type=entity.get("health_check_type"),
        health_check_http_endpoint=entity.get("health_check_http_endpoint"),
        health_check_timeout=entity.get("health_check_timeout"),
        environment=entity.get("environment_json"),
        docker_image=entity.get("docker_image"),
        state=AppState(entity.get("state", "STOPPED")),
        package_state=PackageState(entity.get("package_state", "PENDING")),
    )


def mapping_from_resource(resource: dict) -> RouteMapping:
    entity = resource.get("entity", {})
    return RouteMapping(
        mapping_id=resource["metadata"]["guid"],
        route=entity.get("route_guid", ""),
        app=entity.get("app_guid", ""),
        port=entity.get("app_port"),
    )


def build_archive(path: str, add_content: list[AddContent], dest: str) -> None:
    """Zip an application directory, archive or single file plus extra content."""
    with zipfile.ZipFile(dest, "w", zipfile.ZIP_DEFLATED) as zf:
        if os.path.isdir(path):
            _add_tree(zf, path, "")
        elif zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as src:
                for item in src.infolist():
                    zf.writestr(item, src.read(item))
        else:
            zf.write(path, os.path.basename(path))

        for extra in add_content:
            if os.path.isdir(extra.source):
                _add_tree(zf, extra.source, extra.destination)
            else:
                zf.write(extra.source, extra.destination)


def _add_tree(zf: zipfile.ZipFile, root: str, prefix: str) -> None:
    for dirpath, _, filenames in os.walk(root):
        for fname in filenames:
            full = os.path.join(dirpath, fname)
            rel = os.path.relpath(full, root)
            zf.write(full, os.path.join(prefix, rel) if prefix else rel)


class CloudControllerClient:
    """`AppManager` and `RouteManager` over the platform's v2 REST API."""

    def __init__(
        self,
        api_url: str | None = None,
        token: str | None = None,
        client: httpx.Client | None = None,
        poll_interval_s: float | None = None,
    ):
        if client is None:
            token = token if token is not None else settings.api_token
            headers = {"Authorization": f"bearer {token}"} if token else {}
            client = httpx.Client(
                base_url=api_url or settings.api_url,
                headers=headers,
                timeout=settings.http_timeout_s,
                verify=settings.verify_tls,
            )
        self.client = client
        self.poll_interval_s = settings.poll_interval_s if poll_interval_s is None else poll_interval_s

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as err:
            raise PlatformError(-1, message=f"{method} {path} failed: {type(err).__name__}: {err}") from err

        logit.debug("%s %s -> %s", method, path, resp.status_code)
        body: Any = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text

        if resp.status_code == 404:
            raise NotFound(body)
        if resp.status_code >= 400:
            raise PlatformError(resp.status_code, body)
        return body if isinstance(body, dict) else {}

    def _list(self, path: str) -> list[dict]:
        out: list[dict] = []
        next_url: str | None = path
        while next_url:
            page = self._request("GET", next_url)
            out.extend(page.get("resources", []))
            next_url = page.get("next_url")
        return out

    def _poll(self, app_id: str, timeout_s: float, done: Callable[[], bool], what: str) -> None:
        deadline = time.monotonic() + timeout_s
        while True:
            if done():
                return
            if time.monotonic() >= deadline:
                raise TimeoutExceeded(f"App {app_id} did not {what} within {timeout_s}s")
            time.sleep(self.poll_interval_s)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def create_app(self, fields: dict[str, Any]) -> ApplicationRecord:
        return record_from_resource(self._request("POST", "/v2/apps", json=to_api_fields(fields)))

    def read_app(self, app_id: str) -> ApplicationRecord:
        return record_from_resource(self._request("GET", f"/v2/apps/{app_id}"))

    def update_app(self, app_id: str, fields: dict[str, Any]) -> ApplicationRecord:
        return record_from_resource(self._request("PUT", f"/v2/apps/{app_id}", json=to_api_fields(fields)))

    def delete_app(self, app_id: str, recursive: bool = False) -> None:
        self._request("DELETE", f"/v2/apps/{app_id}", params={"recursive": str(recursive).lower(), "async": "false"})

    def upload_app(self, app_id: str, path: str, add_content: list[AddContent]) -> None:
        fd, archive = tempfile.mkstemp(prefix="alr-bits-", suffix=".zip")
        os.close(fd)
        try:
            build_archive(path, add_content, archive)
            with open(archive, "rb") as fp:
                self._request(
                    "PUT",
                    f"/v2/apps/{app_id}/bits",
                    params={"async": "false"},
                    data={"resources": "[]"},
                    files={"application": ("application.zip", fp, "application/zip")},
                )
        finally:
            os.remove(archive)

    def _staged(self, app_id: str) -> bool:
        app = self.read_app(app_id)
        if app.package_state == PackageState.FAILED:
            raise ReconcileError(f"Staging of app {app_id} failed")
        return app.package_state == PackageState.STAGED

    def _running(self, app_id: str) -> bool:
        try:
            instances = self._request("GET", f"/v2/apps/{app_id}/instances")
        except PlatformError as err:
            # 400 while the app is still staging.
            if err.status == 400:
                return False
            raise
        states = [v.get("state") for v in instances.values() if isinstance(v, dict)]
        if any(s in ("CRASHED", "FLAPPING") for s in states):
            raise ReconcileError(f"App {app_id} instances crashed while starting")
        return bool(states) and all(s == "RUNNING" for s in states)

    def start_app(self, app_id: str, timeout_s: float) -> None:
        self._request("PUT", f"/v2/apps/{app_id}", json={"state": AppState.STARTED.value})
        self._poll(app_id, timeout_s, lambda: self._staged(app_id), "finish staging")
        self.wait_for_app_to_start(app_id, timeout_s)

    def start_docker_app(self, app_id: str, timeout_s: float) -> None:
        self._request("PUT", f"/v2/apps/{app_id}", json={"state": AppState.STARTED.value, "diego": True})
        self.wait_for_app_to_start(app_id, timeout_s)

    def stop_app(self, app_id: str, timeout_s: float) -> None:
        self._request("PUT", f"/v2/apps/{app_id}", json={"state": AppState.STOPPED.value})
        self._poll(app_id, timeout_s, lambda: self.read_app(app_id).stopped, "stop")

    def wait_for_app_to_start(self, app_id: str, timeout_s: float) -> None:
        self._poll(app_id, timeout_s, lambda: self._running(app_id), "start")

    def restage_app(self, app_id: str, timeout_s: float) -> None:
        self._request("POST", f"/v2/apps/{app_id}/restage")
        self._poll(app_id, timeout_s, lambda: self._staged(app_id), "finish staging")

    # ------------------------------------------------------------------
    # Service bindings
    # ------------------------------------------------------------------

    def create_service_binding(self, app_id: str, service_instance: str, params: dict[str, Any] | None = None) -> str:
        payload: dict[str, Any] = {"app_guid": app_id, "service_instance_guid": service_instance}
        if params:
            payload["parameters"] = params
        return self._request("POST", "/v2/service_bindings", json=payload)["metadata"]["guid"]

    def delete_service_binding(self, binding_id: str) -> None:
        self._request("DELETE", f"/v2/service_bindings/{binding_id}")

    # ------------------------------------------------------------------
    # Route mappings
    # ------------------------------------------------------------------

    def read_route_mappings_by_app(self, app_id: str) -> list[RouteMapping]:
        return [mapping_from_resource(r) for r in self._list(f"/v2/apps/{app_id}/route_mappings")]

    def read_route_mappings_by_route(self, route_id: str) -> list[RouteMapping]:
        return [mapping_from_resource(r) for r in self._list(f"/v2/routes/{route_id}/route_mappings")]

    def read_route_mapping(self, mapping_id: str) -> RouteMapping:
        return mapping_from_resource(self._request("GET", f"/v2/route_mappings/{mapping_id}"))

    def create_route_mapping(self, route_id: str, app_id: str, port: int | None = None) -> str:
        payload: dict[str, Any] = {"app_guid": app_id, "route_guid": route_id}
        if port:
            payload["app_port"] = port
        return self._request("POST", "/v2/route_mappings", json=payload)["metadata"]["guid"]

    def delete_route_mapping(self, mapping_id: str) -> None:
        self._request("DELETE", f"/v2/route_mappings/{mapping_id}")
