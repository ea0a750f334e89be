"""Environment-driven settings for the daemon client and the runner."""

import os
from dataclasses import dataclass

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
DEFAULT_API_VERSION = "v1.44"


def _socket_from_env() -> str:
    docker_host = os.getenv("DOCKER_HOST", "")
    if docker_host.startswith("unix://"):
        return docker_host[len("unix://"):]
    return os.getenv("SOCKBOX_DOCKER_SOCKET", DEFAULT_SOCKET_PATH)


@dataclass
class DaemonSettings:
    socket_path: str = DEFAULT_SOCKET_PATH
    api_version: str = DEFAULT_API_VERSION
    request_timeout: float = 300.0

    @classmethod
    def from_env(cls) -> "DaemonSettings":
        return cls(
            socket_path=_socket_from_env(),
            api_version=os.getenv("SOCKBOX_API_VERSION", DEFAULT_API_VERSION),
            request_timeout=float(os.getenv("SOCKBOX_REQUEST_TIMEOUT", "300")),
        )


@dataclass
class RunnerSettings:
    stop_grace_period: float = 2.0  # seconds between graceful stop and forced stop
    log_tail: int = 10000
    name_prefix: str = "sockbox-exec"

    @classmethod
    def from_env(cls) -> "RunnerSettings":
        return cls(
            stop_grace_period=float(os.getenv("SOCKBOX_STOP_GRACE", "2")),
            log_tail=int(os.getenv("SOCKBOX_LOG_TAIL", "10000")),
            name_prefix=os.getenv("SOCKBOX_NAME_PREFIX", "sockbox-exec"),
        )
