"""Capability interfaces the reconciler drives.

Implementations talk to the platform; `cfclient.CloudControllerClient`
provides both managers over HTTP.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from .models import AddContent, ApplicationRecord, ApplicationSpec, RouteMapping


class AppManager(Protocol):
    def create_app(self, fields: dict[str, Any]) -> ApplicationRecord: ...

    def read_app(self, app_id: str) -> ApplicationRecord: ...

    def update_app(self, app_id: str, fields: dict[str, Any]) -> ApplicationRecord: ...

    def delete_app(self, app_id: str, recursive: bool = False) -> None: ...

    def upload_app(self, app_id: str, path: str, add_content: list[AddContent]) -> None: ...

    def start_app(self, app_id: str, timeout_s: float) -> None: ...

    def start_docker_app(self, app_id: str, timeout_s: float) -> None: ...

    def stop_app(self, app_id: str, timeout_s: float) -> None: ...

    def wait_for_app_to_start(self, app_id: str, timeout_s: float) -> None: ...

    def restage_app(self, app_id: str, timeout_s: float) -> None: ...

    def create_service_binding(
        self, app_id: str, service_instance: str, params: dict[str, Any] | None = None
    ) -> str: ...

    def delete_service_binding(self, binding_id: str) -> None: ...


class RouteManager(Protocol):
    def read_route_mappings_by_app(self, app_id: str) -> list[RouteMapping]: ...

    def read_route_mappings_by_route(self, route_id: str) -> list[RouteMapping]: ...

    def read_route_mapping(self, mapping_id: str) -> RouteMapping: ...

    def create_route_mapping(self, route_id: str, app_id: str, port: int | None = None) -> str: ...

    def delete_route_mapping(self, mapping_id: str) -> None: ...


@dataclass(frozen=True)
class Artifact:
    """A resolved application source.

    `path` is empty for container images. `cleanup` marks temporary paths
    that may be removed once the upload finished.
    """

    path: str = ""
    image: str = ""
    cleanup: bool = False


class ArtifactResolver(Protocol):
    def resolve(self, spec: ApplicationSpec) -> Artifact: ...
