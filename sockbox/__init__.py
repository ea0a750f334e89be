# sockbox - Sandboxed code execution over the Docker socket
"""
sockbox - Run untrusted code in throwaway containers.

Talks to the Docker daemon directly over its Unix socket: no docker CLI,
no SDK.
"""

from sockbox.client import DaemonClient
from sockbox.config import DaemonSettings, RunnerSettings
from sockbox.demux import DemuxedOutput, demux, demux_separated
from sockbox.formatting import format_execution_result, truncate_output
from sockbox.models import (
    ApiResult,
    BuildOptions,
    ContainerConfig,
    ContainerHandle,
    RunOptions,
    RunResult,
    RuntimeType,
)
from sockbox.runner import ContainerRunner
from sockbox.tarball import build_context_tar
from sockbox.transport import DaemonTransport

__all__ = [
    "ApiResult",
    "BuildOptions",
    "ContainerConfig",
    "ContainerHandle",
    "ContainerRunner",
    "DaemonClient",
    "DaemonSettings",
    "DaemonTransport",
    "DemuxedOutput",
    "RunOptions",
    "RunResult",
    "RunnerSettings",
    "RuntimeType",
    "build_context_tar",
    "demux",
    "demux_separated",
    "format_execution_result",
    "truncate_output",
]

__version__ = "0.1.0"
