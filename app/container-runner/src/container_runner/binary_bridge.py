from __future__ import annotations

import asyncio
import fnmatch
import logging
import mimetypes
import os
import posixpath
import re
import stat
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .contracts import (
    INPUT_DIR_NAME,
    MOUNT_READ_ONLY,
    MOUNT_READ_WRITE,
    OUTPUT_CONTAINER_PATH,
    OUTPUT_DIR_NAME,
    BinaryData,
    BinaryMapping,
    VolumeMount,
)
from .errors import BinaryStagingError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATTERN = "*"
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class BinaryStagingContext:
    temp_dir: Path
    mount_points: list[VolumeMount] = field(default_factory=list)
    file_sizes: list[int] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(self.file_sizes)


def _host_file_name(index: int, container_path: str) -> str:
    base = posixpath.basename(container_path.rstrip("/")) or "input"
    cleaned = _UNSAFE_NAME_RE.sub("-", base).strip("-.") or "input"
    return f"{index:03d}-{cleaned}"


def _write_inputs(
    temp_dir: Path,
    planned: list[tuple[Path, str, bytes]],
) -> None:
    input_dir = temp_dir / INPUT_DIR_NAME
    input_dir.mkdir(parents=True, exist_ok=True)
    for host_path, _container_path, data in planned:
        host_path.write_bytes(data)


async def stage_inputs(
    binary: Mapping[str, BinaryData],
    mappings: Sequence[BinaryMapping],
    temp_dir: Path,
) -> BinaryStagingContext:
    """Write each mapped binary property under ``<temp_dir>/input``.

    Every mapping is resolved before anything is written, so a missing
    property fails the whole step and no partial mount list escapes.
    """
    planned: list[tuple[Path, str, bytes]] = []
    for index, mapping in enumerate(mappings):
        name = mapping.binary_property_name.strip()
        container_path = mapping.container_path.strip()
        if not name:
            raise BinaryStagingError(f"Binary mapping #{index + 1} has no binary property name.")
        if not container_path.startswith("/"):
            raise BinaryStagingError(
                f"Container path '{container_path}' for binary property '{name}' must be absolute."
            )
        payload = binary.get(name)
        if payload is None:
            available = ", ".join(sorted(binary)) or "none"
            raise BinaryStagingError(
                f"Binary property '{name}' not found on input item (available: {available})."
            )
        host_path = temp_dir / INPUT_DIR_NAME / _host_file_name(index, container_path)
        planned.append((host_path, container_path, payload.data))

    try:
        await asyncio.to_thread(_write_inputs, temp_dir, planned)
    except OSError as exc:
        raise BinaryStagingError(f"Failed to stage binary input in {temp_dir}: {exc}") from exc

    context = BinaryStagingContext(temp_dir=temp_dir)
    for host_path, container_path, data in planned:
        context.mount_points.append(
            VolumeMount(str(host_path), container_path, MOUNT_READ_ONLY)
        )
        context.file_sizes.append(len(data))
    logger.debug(
        "Staged %d binary input(s), %d bytes, in %s",
        len(context.mount_points),
        context.total_bytes,
        temp_dir,
    )
    return context


async def prepare_output_area(temp_dir: Path) -> VolumeMount:
    output_dir = temp_dir / OUTPUT_DIR_NAME
    try:
        await asyncio.to_thread(output_dir.mkdir, parents=True, exist_ok=True)
        # Containers often run as a non-root user.
        await asyncio.to_thread(output_dir.chmod, 0o777)
    except OSError as exc:
        raise BinaryStagingError(f"Failed to create output directory {output_dir}: {exc}") from exc
    return VolumeMount(str(output_dir), OUTPUT_CONTAINER_PATH, MOUNT_READ_WRITE)


def _read_regular_file(path: Path) -> bytes:
    # O_NOFOLLOW: the container may swap the entry for a symlink after the lstat check.
    fd = os.open(path, os.O_RDONLY | getattr(os, "O_NOFOLLOW", 0))
    with os.fdopen(fd, "rb") as handle:
        if not stat.S_ISREG(os.fstat(handle.fileno()).st_mode):
            raise OSError(f"{path} is not a regular file")
        return handle.read()


def _binary_from_file(path: Path) -> BinaryData:
    mime_type, _ = mimetypes.guess_type(path.name)
    return BinaryData(
        data=_read_regular_file(path),
        file_name=path.name,
        mime_type=mime_type or "application/octet-stream",
        file_extension=path.suffix.lstrip("."),
    )


def _is_harvestable(entry: Path, output_root: Path) -> bool:
    """Only regular files that live directly in the output directory qualify.

    The directory is writable by the container, so symlinks, devices and
    fifos planted there are ignored rather than followed onto the host.
    """
    try:
        mode = entry.lstat().st_mode
    except OSError:
        return False
    if not stat.S_ISREG(mode):
        return False
    return entry.resolve().parent == output_root


def _collect_outputs(output_dir: Path, pattern: str) -> dict[str, BinaryData]:
    if output_dir.is_symlink() or not output_dir.is_dir():
        return {}
    output_root = output_dir.resolve()
    collected: dict[str, BinaryData] = {}
    for entry in sorted(output_dir.iterdir()):
        if not fnmatch.fnmatchcase(entry.name, pattern):
            continue
        if not _is_harvestable(entry, output_root):
            logger.warning("Skipping non-regular output entry %s", entry.name)
            continue
        try:
            collected[entry.name] = _binary_from_file(entry)
        except OSError as exc:
            logger.warning("Skipping unreadable output file %s: %s", entry.name, exc)
    return collected


async def harvest_outputs(
    temp_dir: Path,
    pattern: str = DEFAULT_OUTPUT_PATTERN,
) -> dict[str, BinaryData]:
    output_dir = temp_dir / OUTPUT_DIR_NAME
    try:
        outputs = await asyncio.to_thread(
            _collect_outputs, output_dir, pattern.strip() or DEFAULT_OUTPUT_PATTERN
        )
    except OSError as exc:
        raise BinaryStagingError(f"Failed to read container output from {output_dir}: {exc}") from exc
    logger.debug("Harvested %d output file(s) from %s", len(outputs), output_dir)
    return outputs
