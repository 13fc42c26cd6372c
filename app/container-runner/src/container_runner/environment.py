from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import ParamsError

ENV_MODE_KEYPAIR = "keypair"
ENV_MODE_JSON = "json"
ENV_MODE_MODEL = "model"
ENV_MODE_CHOICES = (ENV_MODE_KEYPAIR, ENV_MODE_JSON, ENV_MODE_MODEL)


@dataclass(frozen=True)
class EnvironmentResult:
    variables: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.variables)


def _validate_key(key: str) -> str:
    cleaned = str(key).strip()
    if not cleaned:
        raise ParamsError("Environment variable names must be non-empty.")
    if "=" in cleaned or any(ch.isspace() for ch in cleaned):
        raise ParamsError(
            f"Invalid environment variable name '{cleaned}'.",
            details={"name": cleaned},
        )
    return cleaned


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _from_keypairs(pairs: Any) -> list[str]:
    if pairs is None:
        return []
    if isinstance(pairs, Mapping):
        pairs = pairs.get("values") or pairs.get("pairs") or []
    if not isinstance(pairs, Sequence) or isinstance(pairs, (str, bytes)):
        raise ParamsError("Key/value environment variables must be a list of {name, value}.")
    variables: list[str] = []
    for entry in pairs:
        if not isinstance(entry, Mapping):
            raise ParamsError("Each key/value environment entry must be an object.")
        name = entry.get("name")
        if name is None:
            name = entry.get("key")
        if not str(name or "").strip():
            continue
        variables.append(f"{_validate_key(name)}={_format_value(entry.get('value'))}")
    return variables


def _from_json(raw: Any) -> list[str]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParamsError(f"Environment JSON is invalid: {exc.msg}.") from exc
    if not isinstance(raw, Mapping):
        raise ParamsError("Environment JSON must be an object of name/value pairs.")
    return [f"{_validate_key(key)}={_format_value(value)}" for key, value in raw.items()]


def _from_lines(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        entries = raw.splitlines()
    elif isinstance(raw, Sequence):
        entries = [str(item) for item in raw]
    else:
        raise ParamsError("Environment variables must be KEY=VALUE strings.")
    variables: list[str] = []
    for entry in entries:
        line = entry.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ParamsError(
                f"Environment entry '{line}' must use KEY=VALUE format.",
                details={"entry": line},
            )
        variables.append(f"{_validate_key(key)}={value}")
    return variables


def build_environment(mode: str, value: Any) -> EnvironmentResult:
    """Normalize the node's environment input into ordered KEY=VALUE entries.

    Duplicate keys are kept in order; the engine applies last-wins.
    """
    normalized = str(mode or ENV_MODE_MODEL).strip().lower()
    if normalized == ENV_MODE_KEYPAIR:
        return EnvironmentResult(_from_keypairs(value))
    if normalized == ENV_MODE_JSON:
        return EnvironmentResult(_from_json(value))
    if normalized == ENV_MODE_MODEL:
        return EnvironmentResult(_from_lines(value))
    raise ParamsError(
        f"Unsupported environment mode '{mode}'.",
        details={"allowed": list(ENV_MODE_CHOICES)},
    )
