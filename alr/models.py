from __future__ import annotations

import re
from enum import Enum, IntEnum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

APP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-_\.]{0,62}$")

HEALTH_CHECK_TYPES = ("port", "process", "http", "none")

# Source kinds; an application is deployed from exactly one of them.
SOURCE_URL = "url"
SOURCE_GIT = "git"
SOURCE_RELEASE = "github_release"
SOURCE_DOCKER = "docker_image"
SOURCE_KINDS = (SOURCE_URL, SOURCE_GIT, SOURCE_RELEASE, SOURCE_DOCKER)

# Legacy route slots, in reconciliation order.
LEGACY_SLOTS = ("default_route", "stage_route", "live_route")

DEFAULT_APP_TIMEOUT = 60


class AppState(str, Enum):
    STARTED = "STARTED"
    STOPPED = "STOPPED"


class PackageState(str, Enum):
    PENDING = "PENDING"
    STAGED = "STAGED"
    FAILED = "FAILED"


class ChangeTier(IntEnum):
    NONE = 0
    IN_PLACE_UPDATE = 1
    RESTART = 2
    RESTAGE = 3


# ----------------------------------------------------------------------
# Application sources
# ----------------------------------------------------------------------


class GitSource(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    branch: Optional[str] = None
    tag: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    key: Optional[str] = None

    @model_validator(mode="after")
    def _branch_or_tag(self) -> "GitSource":
        if self.branch and self.tag:
            raise ValueError("git 'branch' and 'tag' are mutually exclusive")
        if not self.branch and not self.tag:
            self.branch = "master"
        return self


class ReleaseSource(BaseModel):
    model_config = ConfigDict(extra="forbid")

    owner: str
    repo: str
    version: str
    filename: str
    user: Optional[str] = None
    password: Optional[str] = None


class AddContent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str
    destination: str


# ----------------------------------------------------------------------
# Bindings and routes
# ----------------------------------------------------------------------


class ServiceBinding(BaseModel):
    service_instance: str
    params: Optional[Dict[str, Any]] = None
    binding_id: str = ""


class RouteMapping(BaseModel):
    """Association between a route and an application."""

    mapping_id: str
    route: str
    app: str
    port: Optional[int] = None


class RouteConfigLegacy(BaseModel):
    """Single-slot route schema: one route per slot, mapped exclusively."""

    kind: Literal["legacy"] = "legacy"
    default_route: str = ""
    default_route_mapping_id: str = ""
    stage_route: str = ""
    stage_route_mapping_id: str = ""
    live_route: str = ""
    live_route_mapping_id: str = ""

    def route(self, slot: str) -> str:
        return getattr(self, slot)

    def mapping_id(self, slot: str) -> str:
        return getattr(self, f"{slot}_mapping_id")


class RouteEntry(BaseModel):
    route: str = Field(..., min_length=1)
    port: Optional[int] = Field(None, ge=1, le=65535)
    mapping_id: str = ""


class RouteConfigSet(BaseModel):
    """Multi-route schema: any number of simultaneous mappings, keyed by route id."""

    kind: Literal["set"] = "set"
    routes: List[RouteEntry] = Field(default_factory=list)

    @field_validator("routes")
    @classmethod
    def _unique_routes(cls, routes: List[RouteEntry]) -> List[RouteEntry]:
        seen: set[str] = set()
        for r in routes:
            if r.route in seen:
                raise ValueError(f"route {r.route} is listed more than once")
            seen.add(r.route)
        return routes

    def route_ids(self) -> set[str]:
        return {r.route for r in self.routes}


RouteConfig = Annotated[Union[RouteConfigLegacy, RouteConfigSet], Field(discriminator="kind")]


class BlueGreenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enable: bool = False


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------


class ApplicationSpec(BaseModel):
    """Desired configuration of an application."""

    model_config = ConfigDict(extra="forbid")

    name: str
    space: str
    instances: int = Field(1, ge=0)
    memory: Optional[int] = Field(None, ge=1)
    disk_quota: Optional[int] = Field(None, ge=1)
    stack: Optional[str] = None
    buildpack: Optional[str] = None
    command: Optional[str] = None
    enable_ssh: Optional[bool] = None
    ports: Optional[List[int]] = None
    health_check_type: str = "port"
    health_check_http_endpoint: Optional[str] = None
    health_check_timeout: Optional[int] = Field(None, ge=0)
    environment: Optional[Dict[str, Any]] = None

    url: Optional[str] = None
    git: Optional[GitSource] = None
    github_release: Optional[ReleaseSource] = None
    docker_image: Optional[str] = None
    docker_credentials: Optional[Dict[str, str]] = None
    add_content: List[AddContent] = Field(default_factory=list)

    service_bindings: List[ServiceBinding] = Field(default_factory=list)
    route: Optional[RouteConfig] = None

    timeout: int = Field(DEFAULT_APP_TIMEOUT, ge=1)
    stopped: bool = False
    blue_green: Optional[BlueGreenConfig] = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, name: str) -> str:
        if not APP_NAME_RE.match(name):
            raise ValueError("Invalid application name. Use letters, numbers and -._ (max 63 chars).")
        return name

    @field_validator("health_check_type")
    @classmethod
    def _valid_health_check_type(cls, value: str) -> str:
        if value not in HEALTH_CHECK_TYPES:
            raise ValueError("health_check_type must be one of 'port', 'process', 'http' or 'none'")
        return value

    @field_validator("ports")
    @classmethod
    def _valid_ports(cls, ports: Optional[List[int]]) -> Optional[List[int]]:
        if ports is None:
            return None
        for p in ports:
            if not 1 <= p <= 65535:
                raise ValueError(f"port {p} is out of range")
        return sorted(set(ports))

    @model_validator(mode="after")
    def _single_source(self) -> "ApplicationSpec":
        given = [k for k in SOURCE_KINDS if getattr(self, k)]
        if len(given) != 1:
            raise ValueError("exactly one of 'url', 'git', 'github_release' or 'docker_image' must be set")
        if self.docker_credentials and not self.docker_image:
            raise ValueError("'docker_credentials' requires 'docker_image'")
        if self.docker_image and self.add_content:
            raise ValueError("'add_content' cannot be used with 'docker_image'")
        return self

    @property
    def source_kind(self) -> str:
        for k in SOURCE_KINDS:
            if getattr(self, k):
                return k
        return ""

    @property
    def is_docker(self) -> bool:
        return self.source_kind == SOURCE_DOCKER

    @property
    def blue_green_enabled(self) -> bool:
        return bool(self.blue_green and self.blue_green.enable)

    def app_fields(self) -> dict[str, Any]:
        """Attributes pushed to the platform when creating the application."""
        fields = {k: getattr(self, k) for k in APP_FIELDS}
        return {k: v for k, v in fields.items() if v is not None}


# Attributes the platform stores on the application itself.
APP_FIELDS = (
    "name",
    "space",
    "instances",
    "memory",
    "disk_quota",
    "stack",
    "buildpack",
    "command",
    "enable_ssh",
    "ports",
    "health_check_type",
    "health_check_http_endpoint",
    "health_check_timeout",
    "environment",
    "docker_image",
    "docker_credentials",
)


class ApplicationRecord(BaseModel):
    """Observed state of a deployed application, owned by the platform."""

    id: str
    name: str
    space: str = ""
    instances: Optional[int] = None
    memory: Optional[int] = None
    disk_quota: Optional[int] = None
    stack: Optional[str] = None
    buildpack: Optional[str] = None
    command: Optional[str] = None
    enable_ssh: Optional[bool] = None
    ports: List[int] = Field(default_factory=list)
    health_check_type: Optional[str] = None
    health_check_http_endpoint: Optional[str] = None
    health_check_timeout: Optional[int] = None
    environment: Optional[Dict[str, Any]] = None
    docker_image: Optional[str] = None
    state: AppState = AppState.STOPPED
    package_state: PackageState = PackageState.PENDING

    @property
    def stopped(self) -> bool:
        return self.state != AppState.STARTED


class ResourceState(BaseModel):
    """Persisted record of one application resource.

    `spec` is the configuration last applied (with computed route mapping ids
    and binding ids filled in), `record` the last observed platform state and
    `deposed` the superseded resources still awaiting confirmed deletion.
    """

    id: str
    spec: ApplicationSpec
    record: Optional[ApplicationRecord] = None
    deposed: Dict[str, str] = Field(default_factory=dict)
