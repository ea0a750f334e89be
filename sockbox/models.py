"""Records passed between the transport, client and runner."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class ApiResult(Generic[T]):
    """Outcome of one daemon call. Errors are values, never raised."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, data: Optional[T] = None, status_code: Optional[int] = None) -> "ApiResult[T]":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, error: str, status_code: Optional[int] = None) -> "ApiResult[T]":
        return cls(success=False, error=error, status_code=status_code)


class RuntimeType(str, Enum):
    """Container runtime type."""
    RUNC = "runc"  # Standard Docker runtime
    RUNSC = "runsc"  # gVisor runtime


@dataclass(frozen=True)
class HostConfig:
    memory: int
    nano_cpus: int
    network_mode: str = "none"
    auto_remove: bool = False  # removal is done by the runner so logs stay readable
    runtime: Optional[RuntimeType] = None
    binds: Optional[tuple[str, ...]] = None

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "Memory": self.memory,
            "NanoCpus": self.nano_cpus,
            "NetworkMode": self.network_mode,
            "AutoRemove": self.auto_remove,
        }
        if self.runtime is not None:
            body["Runtime"] = self.runtime.value
        if self.binds:
            body["Binds"] = list(self.binds)
        return body


@dataclass(frozen=True)
class ContainerConfig:
    """Body of a container create request."""
    image: str
    host_config: HostConfig
    cmd: Optional[tuple[str, ...]] = None
    env: Optional[tuple[str, ...]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    labels: dict[str, str] = field(default_factory=dict)
    tty: bool = False
    open_stdin: bool = True
    stdin_once: bool = False
    attach_stdin: bool = True
    attach_stdout: bool = True
    attach_stderr: bool = True

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "Image": self.image,
            "Tty": self.tty,
            "OpenStdin": self.open_stdin,
            "StdinOnce": self.stdin_once,
            "AttachStdin": self.attach_stdin,
            "AttachStdout": self.attach_stdout,
            "AttachStderr": self.attach_stderr,
            "HostConfig": self.host_config.to_api(),
        }
        if self.cmd is not None:
            body["Cmd"] = list(self.cmd)
        if self.env is not None:
            body["Env"] = list(self.env)
        if self.working_dir:
            body["WorkingDir"] = self.working_dir
        if self.user:
            body["User"] = self.user
        if self.labels:
            body["Labels"] = dict(self.labels)
        return body


@dataclass(frozen=True)
class ContainerHandle:
    id: str
    name: Optional[str] = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecSpec:
    """Command to run inside an already running container."""
    cmd: tuple[str, ...]
    env: Optional[tuple[str, ...]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    attach_stdout: bool = True
    attach_stderr: bool = True

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "Cmd": list(self.cmd),
            "AttachStdout": self.attach_stdout,
            "AttachStderr": self.attach_stderr,
            "Tty": False,
        }
        if self.env is not None:
            body["Env"] = list(self.env)
        if self.working_dir:
            body["WorkingDir"] = self.working_dir
        if self.user:
            body["User"] = self.user
        return body


@dataclass(frozen=True)
class ExecHandle:
    id: str
    container_id: str


@dataclass
class ExecOutput:
    output: str
    exit_code: int


@dataclass
class RunOptions:
    """What to run and under which limits."""
    image: str
    code: Optional[str] = None
    cmd: Optional[list[str]] = None
    env: Optional[list[str]] = None
    working_dir: Optional[str] = None
    memory: str = "512m"
    cpus: float = 1
    network_mode: str = "none"
    timeout: float = 30.0  # seconds
    auto_remove: bool = True
    name: Optional[str] = None
    runtime: Optional[RuntimeType] = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class RunResult:
    """Response from a container run."""
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    container_id: str = ""


@dataclass
class BuildOptions:
    dockerfile: str = "Dockerfile"
    tag: Optional[str] = None
    quiet: bool = True
    build_args: dict[str, str] = field(default_factory=dict)


@dataclass
class TarEntry:
    path: str
    size: int
    mode: int
    is_dir: bool
    mtime: int
