"""Typed daemon operations on top of ``DaemonTransport``."""

import asyncio
import json
import logging
import re
from typing import Any, Optional
from urllib.parse import quote

from sockbox.config import DaemonSettings
from sockbox.demux import DemuxedOutput, demux, demux_separated
from sockbox.models import (
    ApiResult,
    BuildOptions,
    ContainerConfig,
    ContainerHandle,
    ExecHandle,
    ExecOutput,
    ExecSpec,
)
from sockbox.tarball import build_context_tar
from sockbox.transport import DaemonTransport

logger = logging.getLogger(__name__)

_IMAGE_DIGEST = re.compile(r"sha256:[0-9a-f]{64}")


def _q(value: str) -> str:
    return quote(value, safe="")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _stream_lines(text: str) -> list[dict]:
    """Parse newline-delimited JSON, skipping lines that are not objects."""
    messages = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            messages.append(parsed)
    return messages


def _stream_error(message: dict) -> Optional[str]:
    if message.get("error"):
        return str(message["error"])
    detail = message.get("errorDetail")
    if detail:
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
        return str(detail)
    return None


def _as_text(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        return data
    return json.dumps(data)


class DaemonClient:
    """Container, exec and image operations against one daemon.

    Construct once and pass it to whatever needs the daemon; it holds a
    pooled connection and no per-container state.
    """

    def __init__(self, transport: DaemonTransport):
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[DaemonSettings] = None) -> "DaemonClient":
        return cls(DaemonTransport.from_settings(settings or DaemonSettings.from_env()))

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "DaemonClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ---- Containers ----

    async def list_containers(
        self, all: bool = False, filters: Optional[dict[str, list[str]]] = None
    ) -> ApiResult[list[dict]]:
        params = {"all": _flag(all)}
        if filters:
            params["filters"] = json.dumps(filters)
        return await self.transport.request("/containers/json", params=params)

    async def inspect_container(self, container_id: str) -> ApiResult[dict]:
        return await self.transport.request(f"/containers/{_q(container_id)}/json")

    async def create_container(
        self, config: ContainerConfig, name: Optional[str] = None
    ) -> ApiResult[ContainerHandle]:
        result = await self.transport.request(
            "/containers/create",
            method="POST",
            body=config.to_api(),
            params={"name": name} if name else None,
        )
        if not result.success:
            return ApiResult.fail(result.error or "Failed to create container", result.status_code)
        if not isinstance(result.data, dict) or not result.data.get("Id"):
            return ApiResult.fail("Daemon returned no container ID", result.status_code)

        handle = ContainerHandle(
            id=result.data["Id"],
            name=name,
            warnings=tuple(result.data.get("Warnings") or ()),
        )
        for warning in handle.warnings:
            logger.warning(f"Container {handle.id[:12]}: {warning}")
        return ApiResult.ok(handle, result.status_code)

    async def start_container(self, container_id: str) -> ApiResult[None]:
        return await self.transport.request(
            f"/containers/{_q(container_id)}/start", method="POST"
        )

    async def stop_container(self, container_id: str, timeout: int = 10) -> ApiResult[None]:
        """Stop a container, killing it after ``timeout`` seconds."""
        # The daemon holds the request open for the stop timeout.
        return await self.transport.request(
            f"/containers/{_q(container_id)}/stop",
            method="POST",
            params={"t": timeout},
            timeout=None,
        )

    async def remove_container(
        self, container_id: str, force: bool = False, volumes: bool = False
    ) -> ApiResult[None]:
        return await self.transport.request(
            f"/containers/{_q(container_id)}",
            method="DELETE",
            params={"force": _flag(force), "v": _flag(volumes)},
        )

    async def wait_container(
        self, container_id: str, condition: str = "not-running"
    ) -> ApiResult[dict]:
        """Block until the container reaches ``condition``.

        Condition is one of "not-running", "next-exit" or "removed". No client
        timeout is applied; callers bound the wait themselves.
        """
        return await self.transport.request(
            f"/containers/{_q(container_id)}/wait",
            method="POST",
            params={"condition": condition},
            timeout=None,
        )

    async def _raw_logs(self, container_id: str, tail: int, timestamps: bool) -> ApiResult[bytes]:
        return await self.transport.request(
            f"/containers/{_q(container_id)}/logs",
            params={
                "stdout": "true",
                "stderr": "true",
                "tail": str(tail),
                "timestamps": _flag(timestamps),
            },
            raw=True,
        )

    async def container_logs(
        self, container_id: str, tail: int = 100, timestamps: bool = False
    ) -> ApiResult[str]:
        """Combined stdout and stderr with frame headers stripped."""
        result = await self._raw_logs(container_id, tail, timestamps)
        if not result.success:
            return result
        return ApiResult.ok(demux(result.data or b""), result.status_code)

    async def container_logs_separated(
        self, container_id: str, tail: int = 100, timestamps: bool = False
    ) -> ApiResult[DemuxedOutput]:
        result = await self._raw_logs(container_id, tail, timestamps)
        if not result.success:
            return ApiResult.fail(result.error or "Failed to read logs", result.status_code)
        return ApiResult.ok(demux_separated(result.data or b""), result.status_code)

    async def attach_stdin(self, container_id: str, payload: str) -> ApiResult[None]:
        return await self.transport.attach_stdin(container_id, payload.encode("utf-8"))

    # ---- Exec ----

    async def exec_create(self, container_id: str, spec: ExecSpec) -> ApiResult[ExecHandle]:
        result = await self.transport.request(
            f"/containers/{_q(container_id)}/exec",
            method="POST",
            body=spec.to_api(),
        )
        if not result.success:
            return ApiResult.fail(result.error or "Failed to create exec", result.status_code)
        if not isinstance(result.data, dict) or not result.data.get("Id"):
            return ApiResult.fail("Daemon returned no exec ID", result.status_code)
        return ApiResult.ok(ExecHandle(id=result.data["Id"], container_id=container_id))

    async def exec_start(self, exec_id: str) -> ApiResult[str]:
        """Run an exec instance to completion and return its combined output."""
        result = await self.transport.request(
            f"/exec/{_q(exec_id)}/start",
            method="POST",
            body={"Detach": False, "Tty": False},
            raw=True,
            timeout=None,
        )
        if not result.success:
            return result
        return ApiResult.ok(demux(result.data or b""), result.status_code)

    async def exec_inspect(self, exec_id: str) -> ApiResult[dict]:
        return await self.transport.request(f"/exec/{_q(exec_id)}/json")

    async def exec_in_container(
        self,
        container_id: str,
        cmd: list[str],
        working_dir: Optional[str] = None,
        user: Optional[str] = None,
        env: Optional[list[str]] = None,
    ) -> ApiResult[ExecOutput]:
        """Run a command in a running container and wait for it."""
        created = await self.exec_create(
            container_id,
            ExecSpec(
                cmd=tuple(cmd),
                env=tuple(env) if env is not None else None,
                working_dir=working_dir,
                user=user,
            ),
        )
        if not created.success or created.data is None:
            return ApiResult.fail(created.error or "Failed to create exec", created.status_code)

        started = await self.exec_start(created.data.id)
        if not started.success:
            return ApiResult.fail(started.error or "Failed to start exec", started.status_code)

        inspected = await self.exec_inspect(created.data.id)
        exit_code = -1
        if inspected.success and isinstance(inspected.data, dict):
            code = inspected.data.get("ExitCode")
            exit_code = code if isinstance(code, int) else -1

        return ApiResult.ok(ExecOutput(output=started.data or "", exit_code=exit_code))

    # ---- Images ----

    async def list_images(self) -> ApiResult[list[dict]]:
        return await self.transport.request("/images/json")

    async def pull_image(self, name: str, tag: str = "latest") -> ApiResult[None]:
        """Pull an image, waiting for the progress stream to finish."""
        # A ":" after the last "/" is a tag; one before it is a registry port.
        image = name if ":" in name.rsplit("/", 1)[-1] else f"{name}:{tag}"
        result = await self.transport.request(
            "/images/create",
            method="POST",
            params={"fromImage": image},
            timeout=None,
        )
        if not result.success:
            return ApiResult.fail(result.error or f"Failed to pull {image}", result.status_code)

        for message in reversed(_stream_lines(_as_text(result.data))):
            error = _stream_error(message)
            if error:
                logger.error(f"Pull of {image} failed: {error}")
                return ApiResult.fail(error, result.status_code)

        logger.info(f"Pulled image {image}")
        return ApiResult.ok(status_code=result.status_code)

    async def inspect_image(self, name: str) -> ApiResult[dict]:
        return await self.transport.request(f"/images/{_q(name)}/json")

    async def build_image(
        self, context_path: str, options: Optional[BuildOptions] = None
    ) -> ApiResult[str]:
        """Build an image from a directory and return its ID."""
        options = options or BuildOptions()
        try:
            archive = await asyncio.get_event_loop().run_in_executor(
                None, build_context_tar, context_path
            )
        except (OSError, ValueError) as e:
            return ApiResult.fail(f"Failed to create build context: {e}")

        params: dict[str, str] = {
            "dockerfile": options.dockerfile,
            "q": _flag(options.quiet),
        }
        if options.tag:
            params["t"] = options.tag
        if options.build_args:
            params["buildargs"] = json.dumps(options.build_args)

        logger.info(
            f"Building image from {context_path} ({len(archive)} byte context)"
            + (f" as {options.tag}" if options.tag else "")
        )
        result = await self.transport.request(
            "/build",
            method="POST",
            content=archive,
            headers={"Content-Type": "application/x-tar"},
            params=params,
            timeout=None,
        )
        if not result.success:
            return ApiResult.fail(result.error or "Build failed", result.status_code)

        image_id = None
        for message in _stream_lines(_as_text(result.data)):
            error = _stream_error(message)
            if error:
                logger.error(f"Build of {context_path} failed: {error}")
                return ApiResult.fail(error, result.status_code)
            if options.quiet:
                match = _IMAGE_DIGEST.search(str(message.get("stream", "")))
                if match:
                    image_id = match.group(0)
            else:
                aux = message.get("aux")
                if isinstance(aux, dict) and aux.get("ID"):
                    image_id = str(aux["ID"])

        if not image_id:
            return ApiResult.fail("Build finished without reporting an image ID", result.status_code)

        logger.info(f"Built image {image_id}")
        return ApiResult.ok(image_id, result.status_code)

    # ---- Health ----

    async def ping(self) -> ApiResult[str]:
        """Check that the daemon is reachable."""
        return await self.transport.request("/_ping")
