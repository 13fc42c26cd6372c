from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Callable
from enum import Enum
from typing import Any

from .contracts import PULL_POLICY_ALWAYS, ContainerExecutionConfig, ContainerExecutionResult
from .engine_client import EngineClient, ProgressCallback
from .errors import CleanupError, ContainerRunnerError, EngineAPIError, WaitTimeoutError
from .image_names import ensure_valid_image
from .log_stream import decode_log_stream
from .logging_utils import log_event

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], EngineClient]


class LifecycleState(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    PULLED = "pulled"
    CREATED = "created"
    STARTED = "started"
    WAITED = "waited"
    LOGS_FETCHED = "logs_fetched"
    REMOVED = "removed"
    FAILED = "failed"


def build_create_body(config: ContainerExecutionConfig) -> dict[str, Any]:
    host_config: dict[str, Any] = {"Binds": config.binds()}
    if config.memory is not None:
        host_config["Memory"] = int(config.memory)
    if config.cpu_quota is not None:
        host_config["CpuQuota"] = int(config.cpu_quota)
    body: dict[str, Any] = {
        "Image": config.image,
        "Env": list(config.environment),
        "Tty": False,
        "AttachStdout": True,
        "AttachStderr": True,
        "HostConfig": host_config,
    }
    if config.entrypoint:
        body["Entrypoint"] = shlex.split(config.entrypoint)
    if config.command:
        body["Cmd"] = shlex.split(config.command)
    return body


class ContainerLifecycleManager:
    """Runs one container to completion: pull, create, start, wait, logs, remove.

    One manager per execution. Once a container exists its removal is always
    attempted, and a removal failure never replaces the primary outcome.
    """

    def __init__(
        self,
        config: ContainerExecutionConfig,
        *,
        client_factory: ClientFactory | None = None,
        request_timeout: float | None = None,
        wait_timeout: int = 0,
    ) -> None:
        self.config = config
        self.state = LifecycleState.PENDING
        self.history: list[LifecycleState] = []
        self.container_id: str | None = None
        self.cleanup_errors: list[CleanupError] = []
        self._wait_timeout = max(0, int(wait_timeout or 0))
        if client_factory is None:
            timeout = request_timeout

            def client_factory(socket_path: str) -> EngineClient:
                if timeout is None:
                    return EngineClient(socket_path)
                return EngineClient(socket_path, timeout=timeout)

        self._client_factory = client_factory

    def _transition(self, state: LifecycleState) -> None:
        self.state = state
        self.history.append(state)
        log_event(
            "container_lifecycle",
            state=state.value,
            image=self.config.image,
            container_id=(self.container_id or "")[:12],
        )

    async def execute(self, on_progress: ProgressCallback | None = None) -> ContainerExecutionResult:
        try:
            ensure_valid_image(self.config.image)
        except ContainerRunnerError:
            self._transition(LifecycleState.FAILED)
            raise
        self._transition(LifecycleState.VALIDATED)

        async with self._client_factory(self.config.socket_path) as client:
            try:
                await self._ensure_image(client, on_progress)
                self._transition(LifecycleState.PULLED)
                self.container_id = await client.create_container(build_create_body(self.config))
                self._transition(LifecycleState.CREATED)
            except BaseException:
                self._transition(LifecycleState.FAILED)
                raise
            return await self._run_created(client, self.container_id)

    async def _ensure_image(self, client: EngineClient, on_progress: ProgressCallback | None) -> None:
        image = self.config.image
        if self.config.pull_policy != PULL_POLICY_ALWAYS:
            if await client.inspect_image(image) is not None:
                logger.debug("Image %s present locally; skipping pull", image)
                return
        logger.info("Pulling image %s", image)
        await client.pull_image(image, on_progress)

    async def _run_created(self, client: EngineClient, container_id: str) -> ContainerExecutionResult:
        running = False
        failed = False
        try:
            await client.start_container(container_id)
            running = True
            self._transition(LifecycleState.STARTED)

            exit_code = await self._wait(client, container_id)
            running = False
            self._transition(LifecycleState.WAITED)

            raw_logs = await client.container_logs(container_id)
            stdout, stderr = decode_log_stream(raw_logs)
            self._transition(LifecycleState.LOGS_FETCHED)
        except BaseException:
            failed = True
            self._transition(LifecycleState.FAILED)
            raise
        finally:
            await self._remove(client, container_id, force=running, failed=failed)

        return ContainerExecutionResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def _wait(self, client: EngineClient, container_id: str) -> int:
        if not self._wait_timeout:
            return await client.wait_container(container_id)
        try:
            return await asyncio.wait_for(
                client.wait_container(container_id),
                timeout=self._wait_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Container %s exceeded wait timeout of %ss; killing",
                container_id[:12],
                self._wait_timeout,
            )
            try:
                await client.kill_container(container_id)
            except ContainerRunnerError as exc:
                logger.warning("Failed to kill container %s: %s", container_id[:12], exc)
            raise WaitTimeoutError(container_id, self._wait_timeout) from None

    async def _remove(
        self,
        client: EngineClient,
        container_id: str,
        *,
        force: bool,
        failed: bool,
    ) -> None:
        if not self.config.auto_remove:
            logger.info("Keeping container %s (auto-remove disabled)", container_id[:12])
            return
        try:
            await client.remove_container(container_id, force=force or failed)
        except EngineAPIError as exc:
            if exc.status_code == 404:
                logger.debug("Container %s already removed", container_id[:12])
            else:
                self._record_cleanup_failure(container_id, exc)
                return
        except ContainerRunnerError as exc:
            self._record_cleanup_failure(container_id, exc)
            return
        if not failed:
            self._transition(LifecycleState.REMOVED)

    def _record_cleanup_failure(self, container_id: str, exc: BaseException) -> None:
        logger.warning("Failed to remove container %s: %s", container_id[:12], exc)
        self.cleanup_errors.append(
            CleanupError(container_id, f"Failed to remove container {container_id[:12]}: {exc}")
        )


async def execute_container(
    config: ContainerExecutionConfig,
    on_progress: ProgressCallback | None = None,
    **manager_kwargs: Any,
) -> ContainerExecutionResult:
    manager = ContainerLifecycleManager(config, **manager_kwargs)
    return await manager.execute(on_progress)
