from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any

PULL_POLICY_ALWAYS = "always"
PULL_POLICY_MISSING = "missing"
PULL_POLICY_CHOICES = (PULL_POLICY_ALWAYS, PULL_POLICY_MISSING)

MOUNT_READ_ONLY = "ro"
MOUNT_READ_WRITE = "rw"
MOUNT_MODE_CHOICES = (MOUNT_READ_ONLY, MOUNT_READ_WRITE)

OUTPUT_DIR_NAME = "output"
OUTPUT_CONTAINER_PATH = "/output"
INPUT_DIR_NAME = "input"

FAILED_EXIT_CODE = -1


@dataclass(frozen=True)
class VolumeMount:
    host_path: str
    container_path: str
    mode: str = MOUNT_READ_ONLY

    def __post_init__(self) -> None:
        if self.mode not in MOUNT_MODE_CHOICES:
            raise ValueError(f"Unsupported mount mode '{self.mode}'.")

    def as_bind(self) -> str:
        return f"{self.host_path}:{self.container_path}:{self.mode}"


@dataclass(frozen=True)
class ResourceLimits:
    memory: int
    cpu_quota: int


@dataclass
class ContainerExecutionConfig:
    image: str
    socket_path: str
    entrypoint: str | None = None
    command: str | None = None
    environment: list[str] = field(default_factory=list)
    volumes: list[VolumeMount] = field(default_factory=list)
    memory: int | None = None
    cpu_quota: int | None = None
    auto_remove: bool = True
    pull_policy: str = PULL_POLICY_MISSING

    def apply_limits(self, limits: ResourceLimits) -> None:
        self.memory = limits.memory
        self.cpu_quota = limits.cpu_quota

    def binds(self) -> list[str]:
        return [mount.as_bind() for mount in self.volumes]


@dataclass(frozen=True)
class ContainerExecutionResult:
    stdout: str
    stderr: str
    exit_code: int
    has_output: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class BinaryData:
    data: bytes
    file_name: str = ""
    mime_type: str = "application/octet-stream"
    file_extension: str = ""

    @property
    def file_size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class BinaryMapping:
    binary_property_name: str
    container_path: str


@dataclass
class WorkflowItem:
    json: dict[str, Any] = field(default_factory=dict)
    binary: dict[str, BinaryData] = field(default_factory=dict)


@dataclass
class ItemResult:
    json: dict[str, Any]
    paired_item: int
    binary: dict[str, BinaryData] | None = None

    @property
    def success(self) -> bool:
        return bool(self.json.get("success"))

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "json": self.json,
            "pairedItem": {"item": self.paired_item},
        }
        if self.binary:
            payload["binary"] = {
                name: binary_to_dict(value) for name, value in self.binary.items()
            }
        return payload


def binary_to_dict(value: BinaryData) -> dict[str, Any]:
    return {
        "data": base64.b64encode(value.data).decode("ascii"),
        "fileName": value.file_name,
        "mimeType": value.mime_type,
        "fileExtension": value.file_extension,
        "fileSize": value.file_size,
    }


def binary_from_dict(raw: dict[str, Any]) -> BinaryData:
    encoded = str(raw.get("data") or "")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("binary data must be base64 encoded.") from exc
    file_name = str(raw.get("fileName") or "")
    extension = str(raw.get("fileExtension") or "")
    if not extension and "." in file_name:
        extension = file_name.rpartition(".")[2]
    return BinaryData(
        data=data,
        file_name=file_name,
        mime_type=str(raw.get("mimeType") or "application/octet-stream"),
        file_extension=extension,
    )
