"""HTTP over the daemon's Unix control socket.

Every request comes back as an ``ApiResult``; nothing raises across this
boundary.
"""

import asyncio
import errno
import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx

from sockbox.config import DEFAULT_API_VERSION, DEFAULT_SOCKET_PATH, DaemonSettings
from sockbox.models import ApiResult

logger = logging.getLogger(__name__)

DAEMON_UNREACHABLE = "Cannot connect to the Docker daemon"

_UNREACHABLE_ERRNOS = {errno.ENOENT, errno.EACCES, errno.EPERM, errno.ECONNREFUSED}
_UNREACHABLE_MARKERS = ("ENOENT", "EACCES", "No such file or directory", "Permission denied")

# Sentinel so callers can ask for "no timeout" with None.
_DEFAULT = object()


def _is_socket_unreachable(exc: BaseException) -> bool:
    """Walk the cause chain looking for a missing or inaccessible socket."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno in _UNREACHABLE_ERRNOS:
            return True
        if any(marker in str(current) for marker in _UNREACHABLE_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def _error_message(data: Any, status: int) -> str:
    if isinstance(data, dict) and "message" in data:
        return str(data["message"])
    return f"HTTP {status}"


class DaemonTransport:
    """Versioned requests against the daemon socket."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 300.0,
    ):
        self.socket_path = socket_path
        self.api_version = api_version
        self.timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: DaemonSettings) -> "DaemonTransport":
        return cls(
            socket_path=settings.socket_path,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
        )

    @property
    def unreachable_message(self) -> str:
        return f"{DAEMON_UNREACHABLE} at unix://{self.socket_path}. Is the docker daemon running?"

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared httpx client for connection reuse."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                transport=httpx.AsyncHTTPTransport(uds=self.socket_path),
                base_url=f"http://localhost/{self.api_version}",
                timeout=httpx.Timeout(self.timeout),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "DaemonTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        raw: bool = False,
        timeout: Any = _DEFAULT,
    ) -> ApiResult:
        """Send one request and normalize the response.

        ``body`` is sent as JSON, ``content`` as raw bytes. With ``raw=True``
        a successful response body is returned as bytes, untouched; otherwise
        JSON responses are parsed and anything else is returned as text.
        """
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})

        kwargs: dict[str, Any] = {"headers": request_headers}
        if params:
            kwargs["params"] = params
        if content is not None:
            kwargs["content"] = content
        elif body is not None:
            kwargs["content"] = json.dumps(body).encode("utf-8")
        if timeout is not _DEFAULT:
            kwargs["timeout"] = httpx.Timeout(timeout)

        logger.debug(f"{method} {path}")
        try:
            client = self._get_http_client()
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            if _is_socket_unreachable(e):
                return ApiResult.fail(self.unreachable_message)
            return ApiResult.fail(str(e) or e.__class__.__name__)
        except OSError as e:
            if _is_socket_unreachable(e):
                return ApiResult.fail(self.unreachable_message)
            return ApiResult.fail(str(e))

        status = response.status_code
        if status == 204:
            return ApiResult.ok(status_code=status)

        data = self._decode(response, raw=raw and response.is_success)

        if not response.is_success:
            return ApiResult.fail(_error_message(data, status), status_code=status)

        return ApiResult.ok(data, status_code=status)

    @staticmethod
    def _decode(response: httpx.Response, raw: bool) -> Union[bytes, str, Any]:
        if raw:
            return response.content
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                # Streamed endpoints send newline-delimited JSON under this type.
                return response.text
        return response.text

    async def attach_stdin(self, container_id: str, payload: bytes) -> ApiResult[None]:
        """Write ``payload`` to a running container's stdin, then close it.

        The attach endpoint upgrades the HTTP connection to a raw stream, which
        httpx cannot hand over, so this speaks HTTP/1.1 on its own socket.
        """
        path = f"/{self.api_version}/containers/{quote(container_id, safe='')}/attach?stream=1&stdin=1"
        request = (
            f"POST {path} HTTP/1.1\r\n"
            "Host: localhost\r\n"
            "Connection: Upgrade\r\n"
            "Upgrade: tcp\r\n"
            "Content-Length: 0\r\n"
            "\r\n"
        ).encode("ascii")

        try:
            reader, writer = await asyncio.open_unix_connection(self.socket_path)
        except OSError as e:
            if _is_socket_unreachable(e):
                return ApiResult.fail(self.unreachable_message)
            return ApiResult.fail(str(e))

        try:
            writer.write(request)
            await writer.drain()

            status_line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
            parts = status_line.decode("latin-1").split()
            if len(parts) < 2 or not parts[1].isdigit():
                return ApiResult.fail(f"Malformed attach response: {status_line!r}")
            status = int(parts[1])

            content_length = 0
            while True:
                line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
                if line in (b"\r\n", b"\n", b""):
                    break
                name, _, value = line.decode("latin-1").partition(":")
                if name.strip().lower() == "content-length" and value.strip().isdigit():
                    content_length = int(value.strip())

            if status not in (101, 200):
                data: Any = None
                if content_length:
                    raw_body = await asyncio.wait_for(
                        reader.readexactly(content_length), timeout=self.timeout
                    )
                    try:
                        data = json.loads(raw_body)
                    except ValueError:
                        data = None
                return ApiResult.fail(_error_message(data, status), status_code=status)

            writer.write(payload)
            await writer.drain()
            if writer.can_write_eof():
                writer.write_eof()
            return ApiResult.ok(status_code=status)
        except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError) as e:
            return ApiResult.fail(str(e) or e.__class__.__name__)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
