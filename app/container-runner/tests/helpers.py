from __future__ import annotations

import asyncio
import itertools
import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx

SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from container_runner.engine_client import EngineClient  # noqa: E402

_IMAGE_PATH_RE = re.compile(r"^/images/(?P<name>.+)/json$")
_CONTAINER_PATH_RE = re.compile(r"^/containers/(?P<id>[0-9a-f]+)(?:/(?P<action>[a-z]+))?$")


def frame(stream: int, payload: bytes) -> bytes:
    return bytes([stream, 0, 0, 0]) + len(payload).to_bytes(4, "big") + payload


@dataclass
class FakeContainer:
    id: str
    body: dict[str, Any]
    status: str = "created"
    exit_code: int = 0
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def argv(self) -> list[str]:
        return list(self.body.get("Entrypoint") or []) + list(self.body.get("Cmd") or [])

    def host_path(self, container_path: str) -> Path | None:
        for bind in (self.body.get("HostConfig") or {}).get("Binds") or []:
            host, target, _mode = bind.rsplit(":", 2)
            if target == container_path:
                return Path(host)
        return None


ContainerScript = Callable[[FakeContainer], "tuple[int, bytes, bytes]"]


def echo_script(container: FakeContainer) -> tuple[int, bytes, bytes]:
    argv = container.argv
    if argv[:1] == ["echo"]:
        return 0, (" ".join(argv[1:]) + "\n").encode("utf-8"), b""
    if argv[:1] == ["false"]:
        return 1, b"", b"command failed\n"
    return 0, b"", b""


@dataclass
class FakeDockerEngine:
    """In-memory Docker engine served through httpx.MockTransport."""

    images: set[str] = field(default_factory=set)
    script: ContainerScript = echo_script
    failures: dict[str, tuple[int, str]] = field(default_factory=dict)
    pull_error: str = ""
    hang_on_wait: bool = False
    refuse_connections: bool = False
    containers: dict[str, FakeContainer] = field(default_factory=dict)
    created: list[FakeContainer] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    pulls: list[dict[str, str]] = field(default_factory=list)
    kills: list[str] = field(default_factory=list)
    removals: list[dict[str, str]] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client_factory(self, socket_path: str) -> EngineClient:
        return EngineClient(socket_path, transport=self.transport())

    def calls(self, method: str, prefix: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path.startswith(prefix)
        ]

    def _failure(self, operation: str) -> httpx.Response | None:
        failure = self.failures.get(operation)
        if failure is None:
            return None
        status, message = failure
        return httpx.Response(status, json={"message": message})

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.refuse_connections:
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)
        path = request.url.path
        params = dict(request.url.params)

        if path == "/_ping":
            return httpx.Response(200, content=b"OK")

        image_match = _IMAGE_PATH_RE.match(path)
        if request.method == "GET" and image_match:
            return self._failure("inspect") or self._inspect(image_match.group("name"))

        if request.method == "POST" and path == "/images/create":
            return self._failure("pull") or self._pull(params)

        if request.method == "POST" and path == "/containers/create":
            return self._failure("create") or self._create(json.loads(request.content))

        container_match = _CONTAINER_PATH_RE.match(path)
        if container_match is None:
            return httpx.Response(404, json={"message": f"page not found: {path}"})
        container = self.containers.get(container_match.group("id"))
        action = container_match.group("action") or ""
        if container is None:
            return httpx.Response(404, json={"message": "No such container"})

        if request.method == "DELETE" and not action:
            failure = self._failure("remove")
            if failure is not None:
                return failure
            self.removals.append(params)
            del self.containers[container.id]
            return httpx.Response(204)
        if action == "start":
            return self._failure("start") or self._start(container)
        if action == "wait":
            failure = self._failure("wait")
            if failure is not None:
                return failure
            if self.hang_on_wait:
                await asyncio.sleep(3600)
            return httpx.Response(200, json={"StatusCode": container.exit_code, "Error": None})
        if action == "logs":
            return self._failure("logs") or httpx.Response(
                200,
                content=frame(1, container.stdout) + frame(2, container.stderr),
            )
        if action == "kill":
            self.kills.append(container.id)
            container.status = "exited"
            container.exit_code = 137
            return httpx.Response(204)
        return httpx.Response(404, json={"message": f"unsupported action {action}"})

    def _inspect(self, name: str) -> httpx.Response:
        if name in self.images:
            return httpx.Response(200, json={"Id": f"sha256:{name}", "RepoTags": [name]})
        return httpx.Response(404, json={"message": f"No such image: {name}"})

    def _pull(self, params: dict[str, str]) -> httpx.Response:
        self.pulls.append(params)
        lines = [{"status": f"Pulling from {params.get('fromImage')}", "id": params.get("tag")}]
        if self.pull_error:
            lines.append({"error": self.pull_error, "errorDetail": {"message": self.pull_error}})
        else:
            lines.append({"status": "Download complete", "id": "layer1"})
            reference = f"{params.get('fromImage')}:{params.get('tag')}"
            self.images.add(reference)
        body = "".join(json.dumps(line) + "\n" for line in lines)
        return httpx.Response(200, content=body.encode("utf-8"))

    def _create(self, body: dict[str, Any]) -> httpx.Response:
        image = str(body.get("Image") or "")
        if image not in self.images and f"{image}:latest" not in self.images:
            return httpx.Response(404, json={"message": f"No such image: {image}"})
        container_id = f"{next(self._ids):064x}"
        container = FakeContainer(id=container_id, body=body)
        self.containers[container_id] = container
        self.created.append(container)
        return httpx.Response(201, json={"Id": container_id, "Warnings": []})

    def _start(self, container: FakeContainer) -> httpx.Response:
        exit_code, stdout, stderr = self.script(container)
        container.exit_code = exit_code
        container.stdout = stdout
        container.stderr = stderr
        container.status = "running" if self.hang_on_wait else "exited"
        return httpx.Response(204)
