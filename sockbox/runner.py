"""Run one piece of code or one command in a fresh container."""

import asyncio
import logging
import random
import re
import string
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sockbox.client import DaemonClient
from sockbox.config import RunnerSettings
from sockbox.models import (
    ApiResult,
    ContainerConfig,
    ContainerHandle,
    HostConfig,
    RunOptions,
    RunResult,
)
from sockbox.transport import DAEMON_UNREACHABLE

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_BYTES = 512 * 1024 * 1024
EXIT_ERROR = -1
EXIT_TIMEOUT = -2
DAEMON_NOT_RUNNING = "Docker daemon not running. Start Docker and try again."

_MEMORY_PATTERN = re.compile(r"^(\d+)([kmg]?)$", re.IGNORECASE)
_MEMORY_UNITS = {"": 1, "k": 1024, "m": 1024 ** 2, "g": 1024 ** 3}
_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def parse_memory(memory: str) -> int:
    """Convert "512m", "1g", "1024k" or a bare byte count to bytes.

    Anything else falls back to 512 MiB.
    """
    match = _MEMORY_PATTERN.match(memory.strip())
    if not match:
        return DEFAULT_MEMORY_BYTES
    return int(match.group(1)) * _MEMORY_UNITS[match.group(2).lower()]


def cpus_to_nano(cpus: float) -> int:
    return round(cpus * 1_000_000_000)


def generate_container_name(prefix: str = "sockbox-exec") -> str:
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def build_container_config(options: RunOptions) -> ContainerConfig:
    return ContainerConfig(
        image=options.image,
        cmd=tuple(options.cmd) if options.cmd else None,
        env=tuple(options.env) if options.env else None,
        working_dir=options.working_dir,
        labels=dict(options.labels),
        open_stdin=True,
        # Stdin closes once the code payload has been written.
        stdin_once=bool(options.code),
        host_config=HostConfig(
            memory=parse_memory(options.memory),
            nano_cpus=cpus_to_nano(options.cpus),
            network_mode=options.network_mode or "none",
            runtime=options.runtime,
        ),
    )


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)


def _is_unreachable(message: Optional[str]) -> bool:
    return bool(message) and DAEMON_UNREACHABLE in message


class ContainerRunner:
    """Create, start, wait for, collect and remove one container per run.

    ``run`` never raises: every outcome, including daemon failures and
    timeouts, comes back as a fully populated ``RunResult``.
    """

    def __init__(
        self,
        client: DaemonClient,
        stop_grace_period: float = 2.0,
        log_tail: int = 10000,
        name_prefix: str = "sockbox-exec",
    ):
        self.client = client
        self.stop_grace_period = stop_grace_period
        self.log_tail = log_tail
        self.name_prefix = name_prefix

    @classmethod
    def from_settings(
        cls, client: DaemonClient, settings: Optional[RunnerSettings] = None
    ) -> "ContainerRunner":
        settings = settings or RunnerSettings.from_env()
        return cls(
            client,
            stop_grace_period=settings.stop_grace_period,
            log_tail=settings.log_tail,
            name_prefix=settings.name_prefix,
        )

    def _failure(self, message: str, started: float, container_id: str = "") -> RunResult:
        if _is_unreachable(message):
            message = DAEMON_NOT_RUNNING
        logger.error(f"Run failed{f' for {container_id[:12]}' if container_id else ''}: {message}")
        return RunResult(
            exit_code=EXIT_ERROR,
            stdout="",
            stderr=message,
            duration_ms=_elapsed_ms(started),
            timed_out=False,
            container_id=container_id,
        )

    async def _remove_quietly(self, container_id: str) -> None:
        try:
            result = await self.client.remove_container(container_id, force=True)
        except Exception as e:
            logger.warning(f"Failed to remove container {container_id[:12]}: {e}")
            return
        if not result.success:
            logger.warning(f"Failed to remove container {container_id[:12]}: {result.error}")

    @asynccontextmanager
    async def _container(
        self, config: ContainerConfig, name: str, auto_remove: bool
    ) -> AsyncIterator[ApiResult[ContainerHandle]]:
        """Create a container and guarantee its removal on exit."""
        created = await self.client.create_container(config, name=name)
        try:
            yield created
        finally:
            if created.success and created.data is not None and auto_remove:
                await self._remove_quietly(created.data.id)

    async def run(self, options: RunOptions) -> RunResult:
        started = time.monotonic()
        name = options.name or generate_container_name(self.name_prefix)
        try:
            config = build_container_config(options)
            async with self._container(config, name, options.auto_remove) as created:
                if not created.success or created.data is None:
                    return self._failure(created.error or "Failed to create container", started)

                handle = created.data
                logger.info(f"Created container {handle.id[:12]} ({name}) from {options.image}")
                try:
                    return await self._execute(handle, options, started)
                except Exception as e:
                    logger.exception(f"Unexpected error while running {handle.id[:12]}")
                    return self._failure(f"Execution failed: {e}", started, handle.id)
        except Exception as e:
            logger.exception("Unexpected error while preparing container")
            return self._failure(f"Execution failed: {e}", started)

    async def _execute(
        self, handle: ContainerHandle, options: RunOptions, started: float
    ) -> RunResult:
        start_result = await self.client.start_container(handle.id)
        if not start_result.success:
            return self._failure(
                start_result.error or "Failed to start container", started, handle.id
            )

        if options.code:
            attached = await self.client.attach_stdin(handle.id, options.code)
            if not attached.success:
                # The container may still run; it just won't see the code.
                logger.warning(f"Attach stdin failed for {handle.id[:12]}: {attached.error}")

        timed_out = await self._wait_or_stop(handle.id, options.timeout)

        logs = await self.client.container_logs_separated(handle.id, tail=self.log_tail)
        stdout = logs.data.stdout if logs.success and logs.data else ""
        stderr = logs.data.stderr if logs.success and logs.data else ""
        if not logs.success:
            logger.warning(f"Could not read logs of {handle.id[:12]}: {logs.error}")

        inspected = await self.client.inspect_container(handle.id)
        exit_code = EXIT_ERROR
        if inspected.success and isinstance(inspected.data, dict):
            code = (inspected.data.get("State") or {}).get("ExitCode")
            if isinstance(code, int):
                exit_code = code
        elif not inspected.success:
            logger.warning(f"Could not inspect {handle.id[:12]}: {inspected.error}")
            if _is_unreachable(inspected.error) or _is_unreachable(logs.error):
                stderr = DAEMON_NOT_RUNNING
            elif not stderr:
                stderr = inspected.error or logs.error or "Failed to inspect container"

        if timed_out:
            exit_code = EXIT_TIMEOUT
            stderr = (
                f"Execution timed out after {options.timeout:g}s and was terminated.\n{stderr}"
            ).strip()

        result = RunResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=_elapsed_ms(started),
            timed_out=timed_out,
            container_id=handle.id,
        )
        logger.info(
            f"Container {handle.id[:12]} finished with exit code {exit_code} "
            f"in {result.duration_ms}ms"
        )
        return result

    async def _wait_or_stop(self, container_id: str, timeout: float) -> bool:
        """Wait for exit; on deadline, stop then force-stop. Returns True on timeout."""
        wait_task = asyncio.ensure_future(self.client.wait_container(container_id))
        done, _ = await asyncio.wait({wait_task}, timeout=timeout)

        if wait_task in done:
            result = wait_task.result()
            if not result.success:
                raise RuntimeError(result.error or "Wait failed")
            return False

        logger.info(f"Container {container_id[:12]} timed out after {timeout:g}s, stopping")
        await self.client.stop_container(container_id, timeout=2)
        await asyncio.sleep(self.stop_grace_period)
        forced = await self.client.stop_container(container_id, timeout=0)
        if not forced.success:
            logger.debug(f"Forced stop of {container_id[:12]}: {forced.error}")

        # Stopping the container resolves the daemon-side wait.
        await asyncio.wait({wait_task}, timeout=self.stop_grace_period)
        if not wait_task.done():
            wait_task.cancel()
            await asyncio.gather(wait_task, return_exceptions=True)
        elif wait_task.exception() is not None:
            logger.debug(f"Wait on {container_id[:12]} ended with: {wait_task.exception()}")
        return True
