from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .contracts import PULL_POLICY_CHOICES, PULL_POLICY_MISSING

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60
DEFAULT_MEMORY_FLOOR_BYTES = 256 * 1024 * 1024
DEFAULT_MEMORY_CEILING_BYTES = 2 * 1024 * 1024 * 1024
DEFAULT_CPU_QUOTA_FLOOR = 50_000
DEFAULT_CPU_QUOTA_CEILING = 200_000
CPU_PERIOD = 100_000

_ENV_PREFIX = "CONTAINER_RUNNER_"


def as_bool(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    raw = str(value if value is not None else "").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(
    value: Any,
    *,
    default: int,
    minimum: int,
    maximum: int,
) -> int:
    try:
        parsed = int(str(value if value is not None else "").strip())
    except ValueError:
        parsed = default
    return max(minimum, min(maximum, parsed))


@dataclass(frozen=True)
class RunnerSettings:
    socket_path: str = DEFAULT_SOCKET_PATH
    pull_policy: str = PULL_POLICY_MISSING
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    # 0 leaves the wait step unbounded.
    wait_timeout_seconds: int = 0
    temp_root: str | None = None
    log_level: str = "INFO"
    memory_floor_bytes: int = DEFAULT_MEMORY_FLOOR_BYTES
    memory_ceiling_bytes: int = DEFAULT_MEMORY_CEILING_BYTES
    cpu_quota_floor: int = DEFAULT_CPU_QUOTA_FLOOR
    cpu_quota_ceiling: int = DEFAULT_CPU_QUOTA_CEILING


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RunnerSettings:
    env = os.environ if environ is None else environ
    raw: dict[str, Any] = {}
    for key, value in env.items():
        if key.startswith(_ENV_PREFIX):
            raw[key[len(_ENV_PREFIX) :].lower()] = value
    if overrides:
        raw.update({str(key).lower(): value for key, value in overrides.items()})

    pull_policy = str(raw.get("pull_policy") or PULL_POLICY_MISSING).strip().lower()
    if pull_policy not in PULL_POLICY_CHOICES:
        pull_policy = PULL_POLICY_MISSING

    memory_floor = _as_int(
        raw.get("memory_floor_bytes"),
        default=DEFAULT_MEMORY_FLOOR_BYTES,
        minimum=6 * 1024 * 1024,
        maximum=DEFAULT_MEMORY_CEILING_BYTES * 64,
    )
    memory_ceiling = _as_int(
        raw.get("memory_ceiling_bytes"),
        default=DEFAULT_MEMORY_CEILING_BYTES,
        minimum=memory_floor,
        maximum=DEFAULT_MEMORY_CEILING_BYTES * 64,
    )
    cpu_floor = _as_int(
        raw.get("cpu_quota_floor"),
        default=DEFAULT_CPU_QUOTA_FLOOR,
        minimum=1_000,
        maximum=CPU_PERIOD * 64,
    )
    cpu_ceiling = _as_int(
        raw.get("cpu_quota_ceiling"),
        default=DEFAULT_CPU_QUOTA_CEILING,
        minimum=cpu_floor,
        maximum=CPU_PERIOD * 64,
    )
    temp_root = str(raw.get("temp_root") or "").strip() or None

    return RunnerSettings(
        socket_path=str(raw.get("socket_path") or "").strip() or DEFAULT_SOCKET_PATH,
        pull_policy=pull_policy,
        request_timeout_seconds=_as_int(
            raw.get("request_timeout_seconds"),
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
            minimum=1,
            maximum=3600,
        ),
        wait_timeout_seconds=_as_int(
            raw.get("wait_timeout_seconds"),
            default=0,
            minimum=0,
            maximum=7 * 24 * 3600,
        ),
        temp_root=temp_root,
        log_level=str(raw.get("log_level") or "INFO").strip().upper() or "INFO",
        memory_floor_bytes=memory_floor,
        memory_ceiling_bytes=memory_ceiling,
        cpu_quota_floor=cpu_floor,
        cpu_quota_ceiling=cpu_ceiling,
    )
