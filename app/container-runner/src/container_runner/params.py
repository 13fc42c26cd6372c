from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .binary_bridge import DEFAULT_OUTPUT_PATTERN
from .config import DEFAULT_SOCKET_PATH, as_bool
from .contracts import PULL_POLICY_CHOICES, PULL_POLICY_MISSING, BinaryMapping
from .environment import ENV_MODE_JSON, ENV_MODE_KEYPAIR, ENV_MODE_MODEL, build_environment
from .errors import ParamsError


def _normalize_mappings(raw: Any) -> list[BinaryMapping]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        raw = raw.get("mappings") or []
    if not isinstance(raw, list):
        raise ParamsError("binaryFileMappings.mappings must be an array.")
    mappings: list[BinaryMapping] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise ParamsError(f"binaryFileMappings.mappings[{index}] must be an object.")
        property_name = str(entry.get("binaryPropertyName") or "").strip()
        container_path = str(entry.get("containerPath") or "").strip()
        if not property_name or not container_path:
            raise ParamsError(
                f"binaryFileMappings.mappings[{index}] needs binaryPropertyName and containerPath.",
                details={"index": index},
            )
        mappings.append(BinaryMapping(property_name, container_path))
    return mappings


def _env_source(payload: Mapping[str, Any], mode: str) -> Any:
    if mode == ENV_MODE_KEYPAIR:
        return payload.get("environmentVariables")
    if mode == ENV_MODE_JSON:
        return payload.get("environmentJson")
    return payload.get("envVars")


@dataclass(frozen=True)
class RunContainerParams:
    image: str
    entrypoint: str = ""
    command: str = ""
    socket_path: str = DEFAULT_SOCKET_PATH
    env_vars: list[str] = field(default_factory=list)
    binary_data_input: bool = False
    binary_data_output: bool = False
    binary_file_mappings: list[BinaryMapping] = field(default_factory=list)
    output_file_pattern: str = DEFAULT_OUTPUT_PATTERN
    pull_policy: str = PULL_POLICY_MISSING

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        *,
        default_socket_path: str = DEFAULT_SOCKET_PATH,
        default_pull_policy: str = PULL_POLICY_MISSING,
    ) -> "RunContainerParams":
        if not isinstance(payload, Mapping):
            raise ParamsError("params must be a JSON object.")

        env_mode = str(payload.get("envMode") or "").strip().lower()
        if not env_mode:
            if payload.get("environmentVariables") is not None:
                env_mode = ENV_MODE_KEYPAIR
            elif payload.get("environmentJson") is not None:
                env_mode = ENV_MODE_JSON
            else:
                env_mode = ENV_MODE_MODEL
        environment = build_environment(env_mode, _env_source(payload, env_mode))

        pull_policy = str(payload.get("pullPolicy") or default_pull_policy).strip().lower()
        if pull_policy not in PULL_POLICY_CHOICES:
            raise ParamsError(
                "pullPolicy must be one of always|missing.",
                details={"received": pull_policy},
            )

        return cls(
            image=str(payload.get("image") or "").strip(),
            entrypoint=str(payload.get("entrypoint") or "").strip(),
            command=str(payload.get("command") or "").strip(),
            socket_path=str(payload.get("socketPath") or "").strip() or default_socket_path,
            env_vars=environment.variables,
            binary_data_input=as_bool(payload.get("binaryDataInput"), default=False),
            binary_data_output=as_bool(payload.get("binaryDataOutput"), default=False),
            binary_file_mappings=_normalize_mappings(payload.get("binaryFileMappings")),
            output_file_pattern=(
                str(payload.get("outputFilePattern") or "").strip() or DEFAULT_OUTPUT_PATTERN
            ),
            pull_policy=pull_policy,
        )
