"""Shared fixtures: a fake daemon served over a Unix socket."""

import os
import shutil
import struct
import tempfile
from dataclasses import dataclass
from typing import Any, Callable

import pytest_asyncio
from aiohttp import web

from sockbox.transport import DaemonTransport
from sockbox.client import DaemonClient

API_PREFIX = "/v1.44"


def frame(stream: int, payload: bytes) -> bytes:
    """Encode one multiplexed log frame."""
    return struct.pack(">BxxxL", stream, len(payload)) + payload


def short_socket_dir() -> str:
    # Unix socket paths are limited to ~108 bytes, so stay out of pytest's tmp_path.
    return tempfile.mkdtemp(prefix="sockbox-", dir="/tmp")


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: dict
    headers: Any
    body: bytes


class FakeDaemon:
    """Answers daemon API calls from canned responders and records requests."""

    def __init__(self):
        self.socket_path = ""
        self.requests: list[RecordedRequest] = []
        self._routes: dict[tuple[str, str], Callable] = {}

    def on(self, method: str, path: str, respond: Callable) -> None:
        """Register ``respond(request)`` for an unversioned API path."""
        self._routes[(method, API_PREFIX + path)] = respond

    def find(self, method: str, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method and r.path == API_PREFIX + path]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        recorded = RecordedRequest(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            headers=request.headers.copy(),
            body=body,
        )
        self.requests.append(recorded)
        respond = self._routes.get((request.method, request.path))
        if respond is None:
            return web.json_response({"message": f"page not found: {request.path}"}, status=404)
        response = respond(recorded)
        if hasattr(response, "__await__"):
            response = await response
        return response

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app


@pytest_asyncio.fixture
async def fake_daemon():
    """Serve a FakeDaemon on a temporary Unix socket."""
    daemon = FakeDaemon()
    sock_dir = short_socket_dir()
    daemon.socket_path = os.path.join(sock_dir, "docker.sock")

    app_runner = web.AppRunner(daemon.create_app())
    await app_runner.setup()
    site = web.UnixSite(app_runner, daemon.socket_path)
    await site.start()
    try:
        yield daemon
    finally:
        await app_runner.cleanup()
        shutil.rmtree(sock_dir, ignore_errors=True)


@pytest_asyncio.fixture
async def client(fake_daemon):
    """A DaemonClient pointed at the fake daemon."""
    transport = DaemonTransport(socket_path=fake_daemon.socket_path, timeout=5.0)
    async with DaemonClient(transport) as daemon_client:
        yield daemon_client
