from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_REQUEST_TIMEOUT_SECONDS
from .errors import ContainerRunnerError, EngineAPIError, SocketConnectionError
from .image_names import pull_reference

logger = logging.getLogger(__name__)

USER_AGENT = "container-runner/1.0"
ENGINE_BASE_URL = "http://docker"

ProgressCallback = Callable[[dict[str, Any]], None]

_CLIENT_DEFAULT = object()


def _categorize_connection_error(exc: BaseException) -> str:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, FileNotFoundError):
            return "socket_missing"
        if isinstance(current, PermissionError):
            return "auth_error"
        if isinstance(current, ConnectionRefusedError):
            return "socket_unreachable"
        current = current.__cause__ or current.__context__

    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    lowered = str(exc).lower()
    if "no such file or directory" in lowered:
        return "socket_missing"
    if "permission denied" in lowered:
        return "auth_error"
    if "timed out" in lowered:
        return "timeout"
    if "connection refused" in lowered or "failed to connect" in lowered:
        return "socket_unreachable"
    return "api_unreachable"


def _parse_json_body(content: bytes) -> Any:
    text = content.decode("utf-8", errors="replace").strip()
    if not text or text[0] not in "{[":
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {}


class EngineClient:
    """Docker Engine REST client speaking HTTP over a Unix domain socket."""

    def __init__(
        self,
        socket_path: str,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.socket_path = socket_path
        self._timeout_seconds = float(timeout)
        self._client = httpx.AsyncClient(
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            base_url=ENGINE_BASE_URL,
            timeout=httpx.Timeout(self._timeout_seconds),
            headers={"User-Agent": USER_AGENT},
        )

    async def __aenter__(self) -> "EngineClient":
        return self

    async def __aexit__(self, *_exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _connection_error(self, exc: BaseException) -> SocketConnectionError:
        category = _categorize_connection_error(exc)
        detail = str(exc).strip() or type(exc).__name__
        return SocketConnectionError(
            category,
            f"Cannot reach the Docker engine ({category}): {detail}. "
            f"Ensure the engine is running and reachable at {self.socket_path}",
            socket_path=self.socket_path,
        )

    def _unbounded_read_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._timeout_seconds, read=None)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        raw: bool = False,
        timeout: Any = _CLIENT_DEFAULT,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body
        if timeout is not _CLIENT_DEFAULT:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path, params=params, **kwargs)
        except httpx.TransportError as exc:
            raise self._connection_error(exc) from exc

        if not response.is_success:
            raise EngineAPIError(response.status_code, response.text, path=path)
        if raw:
            return response.content
        return _parse_json_body(response.content)

    async def ping(self) -> bool:
        content = await self.request("GET", "/_ping", raw=True)
        return content.strip() == b"OK"

    async def inspect_image(self, image: str) -> dict[str, Any] | None:
        try:
            return await self.request("GET", f"/images/{quote(image, safe='/:@')}/json")
        except EngineAPIError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def pull_image(self, image: str, on_progress: ProgressCallback | None = None) -> None:
        name, tag = pull_reference(image)
        path = "/images/create"
        try:
            async with self._client.stream(
                "POST",
                path,
                params={"fromImage": name, "tag": tag},
                timeout=self._unbounded_read_timeout(),
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    raise EngineAPIError(
                        response.status_code,
                        body.decode("utf-8", errors="replace"),
                        path=path,
                    )
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("Ignoring non-JSON pull progress line: %s", line)
                        continue
                    if not isinstance(record, dict):
                        continue
                    if record.get("error") or record.get("errorDetail"):
                        raise EngineAPIError(response.status_code, line, path=path)
                    if on_progress is not None:
                        on_progress(record)
        except httpx.TransportError as exc:
            raise self._connection_error(exc) from exc

    async def create_container(self, body: dict[str, Any], *, name: str | None = None) -> str:
        params = {"name": name} if name else None
        response = await self.request("POST", "/containers/create", params=params, body=body)
        container_id = str((response or {}).get("Id") or "").strip()
        if not container_id:
            raise ContainerRunnerError("Docker API create did not return a container id.")
        for warning in (response or {}).get("Warnings") or []:
            logger.warning("Docker create warning for %s: %s", container_id[:12], warning)
        return container_id

    async def start_container(self, container_id: str) -> None:
        await self.request("POST", f"/containers/{container_id}/start")

    async def wait_container(self, container_id: str) -> int:
        response = await self.request(
            "POST",
            f"/containers/{container_id}/wait",
            params={"condition": "not-running"},
            timeout=self._unbounded_read_timeout(),
        )
        error = (response or {}).get("Error") or {}
        if isinstance(error, dict) and error.get("Message"):
            logger.warning(
                "Docker wait reported an error for %s: %s",
                container_id[:12],
                error.get("Message"),
            )
        try:
            return int((response or {}).get("StatusCode"))
        except (TypeError, ValueError) as exc:
            raise ContainerRunnerError(
                f"Docker API wait returned no status code for {container_id[:12]}."
            ) from exc

    async def container_logs(self, container_id: str) -> bytes:
        return await self.request(
            "GET",
            f"/containers/{container_id}/logs",
            params={"stdout": 1, "stderr": 1, "follow": 0, "tail": "all", "timestamps": 0},
            raw=True,
            timeout=self._unbounded_read_timeout(),
        )

    async def kill_container(self, container_id: str) -> None:
        await self.request("POST", f"/containers/{container_id}/kill")

    async def remove_container(self, container_id: str, *, force: bool = False) -> None:
        params: dict[str, Any] = {"v": 1}
        if force:
            params["force"] = 1
        await self.request("DELETE", f"/containers/{container_id}", params=params)
