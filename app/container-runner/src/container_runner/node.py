from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

from .binary_bridge import harvest_outputs, prepare_output_area, stage_inputs
from .config import RunnerSettings, load_settings
from .contracts import (
    FAILED_EXIT_CODE,
    PULL_POLICY_MISSING,
    ContainerExecutionConfig,
    ContainerExecutionResult,
    ItemResult,
    VolumeMount,
    WorkflowItem,
)
from .engine_client import ProgressCallback
from .errors import CONNECTION_HINT, ItemExecutionError, format_error, is_connection_error
from .image_names import ensure_valid_image
from .lifecycle import ClientFactory, ContainerLifecycleManager
from .params import RunContainerParams
from .resource_limits import calculate_resource_limits
from .socket_resolver import resolve_socket_path
from .temp_dirs import TempResourceGuard

logger = logging.getLogger(__name__)


def _failure_result(error: ItemExecutionError) -> ItemResult:
    return ItemResult(
        json={
            "error": error.message,
            "success": False,
            "exitCode": FAILED_EXIT_CODE,
            "stdout": "",
            "stderr": error.message,
        },
        paired_item=error.item_index,
    )


class RunContainerNode:
    """Runs one container per workflow item and maps the outcome to item results."""

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        *,
        client_factory: ClientFactory | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self._client_factory = client_factory
        self._on_progress = on_progress

    def _manager(self, config: ContainerExecutionConfig) -> ContainerLifecycleManager:
        return ContainerLifecycleManager(
            config,
            client_factory=self._client_factory,
            request_timeout=self.settings.request_timeout_seconds,
            wait_timeout=self.settings.wait_timeout_seconds,
        )

    def _error_message(self, error: BaseException, params: RunContainerParams, socket_path: str) -> str:
        if is_connection_error(error):
            return format_error(error, "connection", f"{CONNECTION_HINT} at {socket_path}.")
        return format_error(error, "container execution", f"Image: {params.image or 'unknown'}")

    async def execute_item(
        self,
        item: WorkflowItem,
        params: RunContainerParams,
        item_index: int,
        guard: TempResourceGuard,
    ) -> ItemResult:
        socket_path = params.socket_path
        temp_dir: Path | None = None
        try:
            socket_path = resolve_socket_path(params.socket_path).path
            ensure_valid_image(params.image)

            config = ContainerExecutionConfig(
                image=params.image,
                entrypoint=params.entrypoint or None,
                command=params.command or None,
                environment=list(params.env_vars),
                socket_path=socket_path,
                auto_remove=True,
                pull_policy=params.pull_policy,
            )

            volumes: list[VolumeMount] = []
            if params.binary_data_input and params.binary_file_mappings:
                temp_dir = await guard.acquire()
                staging = await stage_inputs(item.binary, params.binary_file_mappings, temp_dir)
                volumes.extend(staging.mount_points)
                config.apply_limits(
                    calculate_resource_limits(staging.file_sizes, self.settings)
                )
            if params.binary_data_output:
                if temp_dir is None:
                    temp_dir = await guard.acquire()
                volumes.append(await prepare_output_area(temp_dir))
            config.volumes = volumes

            result = await self._manager(config).execute(self._on_progress)

            outputs = {}
            if params.binary_data_output and temp_dir is not None:
                outputs = await harvest_outputs(temp_dir, params.output_file_pattern)
            result = replace(result, has_output=bool(outputs))
            return self._item_result(item_index, params, config, result, outputs)
        except Exception as exc:
            message = self._error_message(exc, params, socket_path)
            logger.warning("Item %d failed: %s", item_index, message)
            raise ItemExecutionError(message, item_index=item_index, cause=exc) from exc
        finally:
            if temp_dir is not None:
                await guard.release(temp_dir)

    def _item_result(
        self,
        item_index: int,
        params: RunContainerParams,
        config: ContainerExecutionConfig,
        result: ContainerExecutionResult,
        outputs: dict[str, Any],
    ) -> ItemResult:
        container: dict[str, Any] = {
            "image": params.image,
            "command": config.command,
            "entrypoint": config.entrypoint,
            "environmentVariablesCount": len(params.env_vars),
            "socketPath": config.socket_path,
            "binaryInput": params.binary_data_input,
            "binaryOutput": params.binary_data_output,
        }
        if outputs:
            container["outputFilesCount"] = len(outputs)
        return ItemResult(
            json={
                "stdout": result.stdout,
                "stderr": result.stderr,
                "exitCode": result.exit_code,
                "success": result.success,
                "hasOutput": result.has_output,
                "container": container,
            },
            paired_item=item_index,
            binary=outputs or None,
        )

    async def execute(
        self,
        items: Sequence[WorkflowItem],
        params: RunContainerParams | Sequence[RunContainerParams],
        *,
        continue_on_fail: bool = False,
        concurrency: int = 1,
    ) -> list[ItemResult]:
        """Process independent items; with continue_on_fail a failed item becomes an error record.

        Without it the first failure (by item index) is raised once every
        in-flight item has settled. Temp directories are released either way.
        """
        if isinstance(params, RunContainerParams):
            per_item = [params] * len(items)
        else:
            per_item = list(params)
            if len(per_item) != len(items):
                raise ValueError("params must be a single value or one entry per item.")

        guard = TempResourceGuard(self.settings.temp_root)
        try:
            if concurrency <= 1:
                results: list[ItemResult] = []
                for index, item in enumerate(items):
                    try:
                        results.append(
                            await self.execute_item(item, per_item[index], index, guard)
                        )
                    except ItemExecutionError as exc:
                        if not continue_on_fail:
                            raise
                        results.append(_failure_result(exc))
                return results

            semaphore = asyncio.Semaphore(concurrency)

            async def _run(index: int) -> ItemResult:
                async with semaphore:
                    return await self.execute_item(items[index], per_item[index], index, guard)

            outcomes = await asyncio.gather(
                *(_run(index) for index in range(len(items))),
                return_exceptions=True,
            )
            results = []
            for outcome in outcomes:
                if isinstance(outcome, ItemExecutionError):
                    if not continue_on_fail:
                        raise outcome
                    results.append(_failure_result(outcome))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)
            return results
        finally:
            await guard.release_all()


async def run_container(
    socket_path: str,
    image: str,
    entrypoint: str = "",
    command: str = "",
    env_vars: Sequence[str] | None = None,
    **manager_kwargs: Any,
) -> tuple[bytes, bytes, int]:
    config = ContainerExecutionConfig(
        image=image,
        entrypoint=entrypoint or None,
        command=command or None,
        environment=list(env_vars or []),
        socket_path=socket_path,
        auto_remove=True,
        pull_policy=PULL_POLICY_MISSING,
    )
    result = await ContainerLifecycleManager(config, **manager_kwargs).execute()
    return result.stdout.encode("utf-8"), result.stderr.encode("utf-8"), result.exit_code
