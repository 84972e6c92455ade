"""Core domain models for the deskscope system.

These models are the payloads flowing through the system: the one-shot
wake observation, the repeatedly polled live observation, and the diff
envelope emitted between two live observations. Every field that a
probe may fail to fill is optional; ``None`` always means "unknown",
never "false" or "zero".
"""

from __future__ import annotations

import enum
from typing import Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
)

SCHEMA_VERSION = 1
"""Incremented only on breaking changes to the payload shape."""

KNOWN_SCHEMA_VERSIONS = frozenset({SCHEMA_VERSION})


class SchemaVersionError(Exception):
    """Raised when a payload carries a schema version this build does not know."""

    def __init__(self, message: str, version: object = None) -> None:
        super().__init__(message)
        self.version = version


def check_schema_version(payload: dict[str, Any]) -> int:
    """Return the payload's schema version, rejecting unknown values.

    Consumers must refuse payloads with an unknown major version rather
    than guess what the fields mean.

    Raises:
        SchemaVersionError: If the version is missing or not recognized.
    """
    version = payload.get("schema_version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise SchemaVersionError("Payload has no integer schema_version", version=version)
    if version not in KNOWN_SCHEMA_VERSIONS:
        raise SchemaVersionError(f"Unknown schema_version {version}", version=version)
    return version


class WireModel(BaseModel):
    """Base for every serialized model.

    Fields named in ``omit_when_none`` are dropped from the serialized
    form when unknown; every other optional field serializes as ``null``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    omit_when_none: ClassVar[frozenset[str]] = frozenset()

    @model_serializer(mode="wrap")
    def _drop_unknown(self, handler: SerializerFunctionWrapHandler) -> Any:
        data = handler(self)
        if isinstance(data, dict):
            for name in self.omit_when_none:
                if data.get(name) is None:
                    data.pop(name, None)
        return data


def to_wire(model: BaseModel) -> dict[str, Any]:
    """Serialize a model to its generic JSON-compatible structure."""
    return model.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class Point(WireModel):
    """A screen coordinate in global desktop space."""

    x: int
    y: int


class Bounds(WireModel):
    """A rectangle in global desktop space, origin at top-left."""

    x: int
    y: int
    w: int
    h: int


# ---------------------------------------------------------------------------
# Live observation
# ---------------------------------------------------------------------------


class FSEventKind(str, enum.Enum):
    """Kind of filesystem change reported in ``Observation.fs_events``."""

    CREATE = "Create"
    MODIFY = "Modify"
    DELETE = "Delete"
    RENAME = "Rename"


class WindowInfo(WireModel):
    """A top-level window as reported by the window system."""

    id: str = Field(description="Window-system identifier, stable for the window's lifetime")
    title: str = Field(default="")
    app: str = Field(default="")
    pid: int | None = Field(default=None)
    bounds: Bounds | None = Field(default=None)
    workspace: int | None = Field(default=None)
    is_minimized: bool | None = Field(default=None)
    is_fullscreen: bool | None = Field(default=None)


class DisplayInfo(WireModel):
    id: int
    bounds: Bounds
    is_primary: bool | None = None
    scale_factor: float | None = None


class TerminalCtx(WireModel):
    """Working directory and shell of the terminal the user is in."""

    cwd: str
    shell: str | None = None


class ConnInfo(WireModel):
    """An open network connection."""

    proto: str = Field(default="tcp")
    local_port: int
    remote_addr: str
    remote_port: int
    pid: int | None = None
    app: str | None = None
    state: str = Field(default="ESTABLISHED")


class FSEvent(WireModel):
    path: str
    kind: FSEventKind
    ts: float


class Observation(WireModel):
    """Live state of the desktop at one poll.

    ``fs_events`` holds only the changes seen since the previous poll of
    the same engine and is always empty on the first poll.
    """

    schema_version: int = Field(default=SCHEMA_VERSION)
    ts: float = Field(description="Wall-clock time of the poll, fractional Unix seconds")
    monotonic_ms: int = Field(ge=0, description="Milliseconds since the observer started")
    idle_ms: int | None = Field(default=None, description="Time since last user input")
    focus: WindowInfo | None = Field(default=None)
    windows: list[WindowInfo] = Field(default_factory=list, description="Front-to-back z-order")
    cursor: Point | None = Field(default=None)
    displays: list[DisplayInfo] = Field(default_factory=list)
    terminal_ctx: TerminalCtx | None = Field(default=None)
    net_connections: list[ConnInfo] = Field(default_factory=list)
    fs_events: list[FSEvent] = Field(default_factory=list)


class DiffEnvelope(WireModel):
    """A JSON Patch from the previous observation's wire form to the current one."""

    ts: float
    monotonic_ms: int
    patch: list[dict[str, Any]] = Field(description="RFC 6902 operations, in application order")


# ---------------------------------------------------------------------------
# Wake observation
# ---------------------------------------------------------------------------


class MachineInfo(WireModel):
    hostname: str | None = None
    os: str | None = None
    os_version: str | None = None
    kernel: str | None = None
    arch: str | None = None
    is_vm: bool | None = None
    is_container: bool | None = None
    hypervisor: str | None = None
    chassis: str | None = None


class UserInfo(WireModel):
    username: str | None = None
    full_name: str | None = None
    home_dir: str | None = None
    shell: str | None = None
    uid: int | None = None
    groups: list[str] = Field(default_factory=list)


class DateTimeInfo(WireModel):
    ts: float
    iso: str
    timezone: str | None = None
    utc_offset_seconds: int | None = None
    uptime_seconds: int | None = None
    login_ts: float | None = None


class HomeTreeEntry(WireModel):
    """A directory directly under the home directory.

    Small directories list their children; large ones report a count.
    """

    omit_when_none: ClassVar[frozenset[str]] = frozenset({"children", "entry_count"})

    path: str
    kind: str = "dir"
    children: list[str] | None = None
    entry_count: int | None = None


class RecentFileInfo(WireModel):
    path: str
    modified_ago_s: int


class MountInfo(WireModel):
    path: str
    fs_type: str | None = None
    total_gb: float | None = None
    free_gb: float | None = None


class FilesystemInfo(WireModel):
    omit_when_none: ClassVar[frozenset[str]] = frozenset({"home_tree"})

    home_tree: list[HomeTreeEntry] | None = Field(default_factory=list)
    recent_files: list[RecentFileInfo] = Field(default_factory=list)
    mounts: list[MountInfo] = Field(default_factory=list)


class InstalledApp(WireModel):
    omit_when_none: ClassVar[frozenset[str]] = frozenset({"version"})

    name: str
    id: str
    kind: str
    version: str | None = None


class NetworkIdentity(WireModel):
    omit_when_none: ClassVar[frozenset[str]] = frozenset(
        {"public_ip", "vpn_interface", "default_gateway", "hostname_fqdn"}
    )

    local_ips: list[str] = Field(default_factory=list)
    public_ip: str | None = None
    vpn_active: bool | None = None
    vpn_interface: str | None = None
    default_gateway: str | None = None
    dns_servers: list[str] = Field(default_factory=list)
    hostname_fqdn: str | None = None


class ListeningPort(WireModel):
    port: int
    proto: str = "tcp"
    pid: int | None = None
    app: str | None = None
    addr: str


class GpuInfo(WireModel):
    name: str
    vram_gb: float | None = None
    driver: str | None = None


class ResourceInfo(WireModel):
    cpu_cores: int | None = None
    cpu_model: str | None = None
    ram_total_gb: float | None = None
    ram_free_gb: float | None = None
    gpus: list[GpuInfo] = Field(default_factory=list)


class RunningProcessInfo(WireModel):
    pid: int
    app: str
    started_ago_s: int


class RecentActivity(WireModel):
    shell_history: list[str] = Field(default_factory=list)
    running_since_boot: list[RunningProcessInfo] = Field(default_factory=list)


class SessionInfo(WireModel):
    """Another login session on the machine (``who``-style)."""

    username: str
    tty: str | None = None
    from_: str | None = Field(default=None, alias="from")
    login_ts: float | None = None


class WakeObservation(WireModel):
    """Cold-start orientation payload, built once per invocation.

    Sections whose probes failed keep their empty representation; a
    partially populated wake observation is a valid result.
    """

    schema_version: int = Field(default=SCHEMA_VERSION)
    ts: float
    machine: MachineInfo = Field(default_factory=MachineInfo)
    user: UserInfo = Field(default_factory=UserInfo)
    datetime: DateTimeInfo
    filesystem: FilesystemInfo = Field(default_factory=FilesystemInfo)
    installed_apps: list[InstalledApp] = Field(default_factory=list)
    network_identity: NetworkIdentity = Field(default_factory=NetworkIdentity)
    listening_ports: list[ListeningPort] = Field(default_factory=list)
    resources: ResourceInfo = Field(default_factory=ResourceInfo)
    recent_activity: RecentActivity = Field(default_factory=RecentActivity)
    other_sessions: list[SessionInfo] = Field(default_factory=list)
