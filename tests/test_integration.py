"""Integration tests for sockbox.

These tests need a running Docker daemon reachable over its Unix socket and
network access to pull ``alpine``. They are skipped when the socket is absent.

Run with:
    pytest tests/test_integration.py -v -m integration
"""

import os
import uuid

import pytest
import pytest_asyncio

from sockbox.client import DaemonClient
from sockbox.config import DaemonSettings
from sockbox.models import BuildOptions, ContainerConfig, HostConfig, RunOptions
from sockbox.runner import ContainerRunner, cpus_to_nano, parse_memory

IMAGE = "alpine"

_settings = DaemonSettings.from_env()

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.path.exists(_settings.socket_path),
        reason=f"no Docker socket at {_settings.socket_path}",
    ),
]


@pytest_asyncio.fixture
async def client():
    """A client with alpine pulled, skipping if the daemon does not answer."""
    async with DaemonClient.from_settings(_settings) as daemon_client:
        if not (await daemon_client.ping()).success:
            pytest.skip("Docker daemon not responding")
        pulled = await daemon_client.pull_image(IMAGE)
        if not pulled.success:
            pytest.skip(f"Could not pull {IMAGE}: {pulled.error}")
        yield daemon_client


@pytest.fixture
def runner(client):
    return ContainerRunner(client, stop_grace_period=0.5)


class TestRun:
    """Full container lifecycle."""

    @pytest.mark.asyncio
    async def test_code_reaches_stdin(self, runner):
        result = await runner.run(RunOptions(image=IMAGE, cmd=["cat"], code="hello"))
        assert result.exit_code == 0
        assert result.stdout == "hello"
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_exit_code_and_stderr(self, runner):
        result = await runner.run(
            RunOptions(image=IMAGE, cmd=["sh", "-c", "echo oops >&2; exit 3"])
        )
        assert result.exit_code == 3
        assert result.stderr == "oops\n"

    @pytest.mark.asyncio
    async def test_network_disabled_by_default(self, runner):
        result = await runner.run(
            RunOptions(image=IMAGE, cmd=["sh", "-c", "ls /sys/class/net"])
        )
        assert result.stdout.split() == ["lo"]

    @pytest.mark.asyncio
    async def test_timeout_removes_container(self, client, runner):
        name = f"sockbox-it-{uuid.uuid4().hex[:8]}"
        result = await runner.run(
            RunOptions(image=IMAGE, cmd=["sleep", "10"], timeout=0.1, name=name)
        )

        assert result.timed_out is True
        assert result.exit_code == -2
        assert result.duration_ms >= 100

        listed = await client.list_containers(all=True, filters={"name": [name]})
        assert listed.success
        assert listed.data == []


class TestExec:
    """Exec inside a long-running container."""

    @pytest.mark.asyncio
    async def test_exec_in_container(self, client):
        config = ContainerConfig(
            image=IMAGE,
            cmd=("sleep", "30"),
            host_config=HostConfig(memory=parse_memory("128m"), nano_cpus=cpus_to_nano(0.5)),
        )
        created = await client.create_container(config, name=f"sockbox-it-{uuid.uuid4().hex[:8]}")
        assert created.success, created.error
        cid = created.data.id
        try:
            assert (await client.start_container(cid)).success
            result = await client.exec_in_container(cid, ["sh", "-c", "echo out; exit 4"])
            assert result.success
            assert result.data.exit_code == 4
            assert result.data.output == "out\n"
        finally:
            await client.remove_container(cid, force=True)


class TestBuild:
    """Image build from a local directory."""

    @pytest.mark.asyncio
    async def test_build_from_directory(self, client, tmp_path):
        (tmp_path / "Dockerfile").write_text(f"FROM {IMAGE}\nCOPY hello.txt /hello.txt\n")
        (tmp_path / "hello.txt").write_text("hi\n")
        tag = f"sockbox-it:{uuid.uuid4().hex[:8]}"

        built = await client.build_image(str(tmp_path), BuildOptions(tag=tag))
        assert built.success, built.error
        assert built.data.startswith("sha256:")

        inspected = await client.inspect_image(tag)
        assert inspected.success
        assert inspected.data["Id"] == built.data
