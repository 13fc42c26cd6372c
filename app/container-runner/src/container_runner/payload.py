from __future__ import annotations

import json
import os
import select
import stat
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import RunnerSettings, as_bool
from .contracts import WorkflowItem, binary_from_dict
from .errors import ParamsError
from .params import RunContainerParams

PAYLOAD_FILE_ENV = "CONTAINER_RUNNER_PAYLOAD_FILE"
PAYLOAD_JSON_ENV = "CONTAINER_RUNNER_PAYLOAD_JSON"
MAX_CONCURRENCY = 32
_STDIN_CHUNK_BYTES = 1024 * 1024


def _coerce_concurrency(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 1
    return max(1, min(parsed, MAX_CONCURRENCY))


def _normalize_item(raw: Any, index: int) -> tuple[WorkflowItem, dict[str, Any]]:
    if not isinstance(raw, Mapping):
        raise ParamsError(f"items[{index}] must be a JSON object.", details={"index": index})
    json_data = raw.get("json") or {}
    if not isinstance(json_data, Mapping):
        raise ParamsError(f"items[{index}].json must be a JSON object.", details={"index": index})
    binary_raw = raw.get("binary") or {}
    if not isinstance(binary_raw, Mapping):
        raise ParamsError(f"items[{index}].binary must be a JSON object.", details={"index": index})
    binary = {}
    for name, entry in binary_raw.items():
        if not isinstance(entry, Mapping):
            raise ParamsError(
                f"items[{index}].binary.{name} must be a JSON object.",
                details={"index": index, "property": name},
            )
        try:
            binary[str(name)] = binary_from_dict(entry)
        except ValueError as exc:
            raise ParamsError(
                f"items[{index}].binary.{name}: {exc}",
                details={"index": index, "property": name},
            ) from exc
    overrides = raw.get("params") or {}
    if not isinstance(overrides, Mapping):
        raise ParamsError(f"items[{index}].params must be a JSON object.", details={"index": index})
    return WorkflowItem(json=dict(json_data), binary=binary), dict(overrides)


@dataclass(frozen=True)
class RunPayload:
    items: list[WorkflowItem]
    params: list[RunContainerParams]
    continue_on_fail: bool = False
    concurrency: int = 1

    @classmethod
    def from_dict(cls, payload: Any, settings: RunnerSettings) -> "RunPayload":
        if not isinstance(payload, Mapping):
            raise ParamsError("payload must be a JSON object.")
        base = payload.get("params") or {}
        if not isinstance(base, Mapping):
            raise ParamsError("payload.params must be a JSON object.")

        raw_items = payload.get("items")
        if raw_items is None:
            raw_items = [{}]
        if not isinstance(raw_items, list):
            raise ParamsError("payload.items must be an array.")

        items: list[WorkflowItem] = []
        params: list[RunContainerParams] = []
        for index, raw_item in enumerate(raw_items):
            item, overrides = _normalize_item(raw_item, index)
            merged = {**base, **overrides}
            resolved = RunContainerParams.from_dict(
                merged,
                default_socket_path=settings.socket_path,
                default_pull_policy=settings.pull_policy,
            )
            items.append(item)
            params.append(resolved)

        return cls(
            items=items,
            params=params,
            continue_on_fail=as_bool(payload.get("continueOnFail"), default=False),
            concurrency=_coerce_concurrency(payload.get("concurrency")),
        )


def _read_stdin_bytes() -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk = os.read(0, _STDIN_CHUNK_BYTES)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def load_payload_input(
    *,
    payload_file: str | None = None,
    payload_json: str | None = None,
) -> dict[str, Any]:
    file_candidate = (payload_file or "").strip() or os.getenv(PAYLOAD_FILE_ENV, "").strip()
    json_candidate = (payload_json or "").strip() or os.getenv(PAYLOAD_JSON_ENV, "").strip()

    if file_candidate:
        source_path = Path(file_candidate)
        if not source_path.exists():
            raise ParamsError(f"payload file '{source_path}' does not exist.")
        try:
            return json.loads(source_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ParamsError(
                f"payload file JSON is invalid: {exc.msg}.",
                details={"path": str(source_path)},
            ) from exc

    if json_candidate:
        try:
            return json.loads(json_candidate)
        except json.JSONDecodeError as exc:
            raise ParamsError(
                f"payload JSON is invalid: {exc.msg}.",
                details={"source": f"{PAYLOAD_JSON_ENV}/--payload-json"},
            ) from exc

    if not os.isatty(0):
        should_read_stdin = False
        try:
            stdin_mode = os.fstat(0).st_mode
            if stat.S_ISREG(stdin_mode):
                should_read_stdin = True
            else:
                readable, _, _ = select.select([0], [], [], 0.0)
                should_read_stdin = bool(readable)
        except (OSError, ValueError):
            should_read_stdin = False

        if should_read_stdin:
            stdin_text = _read_stdin_bytes().decode("utf-8", errors="replace").strip()
            if stdin_text:
                try:
                    return json.loads(stdin_text)
                except json.JSONDecodeError as exc:
                    raise ParamsError(
                        f"stdin payload JSON is invalid: {exc.msg}.",
                        details={"source": "stdin"},
                    ) from exc

    raise ParamsError(
        "No payload provided. Set --payload-file, --payload-json, "
        f"{PAYLOAD_FILE_ENV}, {PAYLOAD_JSON_ENV}, or pipe JSON to stdin.",
    )
