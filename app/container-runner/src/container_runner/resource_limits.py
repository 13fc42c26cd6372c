from __future__ import annotations

from collections.abc import Iterable

from .config import (
    DEFAULT_CPU_QUOTA_CEILING,
    DEFAULT_CPU_QUOTA_FLOOR,
    DEFAULT_MEMORY_CEILING_BYTES,
    DEFAULT_MEMORY_FLOOR_BYTES,
    RunnerSettings,
)
from .contracts import ResourceLimits

MEMORY_PER_INPUT_BYTE = 4
CPU_QUOTA_STEP = 25_000
CPU_QUOTA_STEP_BYTES = 64 * 1024 * 1024


def estimate_resource_limits(
    total_input_bytes: int,
    *,
    memory_floor: int = DEFAULT_MEMORY_FLOOR_BYTES,
    memory_ceiling: int = DEFAULT_MEMORY_CEILING_BYTES,
    cpu_quota_floor: int = DEFAULT_CPU_QUOTA_FLOOR,
    cpu_quota_ceiling: int = DEFAULT_CPU_QUOTA_CEILING,
) -> ResourceLimits:
    total = max(0, int(total_input_bytes))
    memory = memory_floor + total * MEMORY_PER_INPUT_BYTE
    # One extra step per started 64 MiB of input.
    steps = -(-total // CPU_QUOTA_STEP_BYTES)
    cpu_quota = cpu_quota_floor + steps * CPU_QUOTA_STEP
    return ResourceLimits(
        memory=max(memory_floor, min(memory_ceiling, memory)),
        cpu_quota=max(cpu_quota_floor, min(cpu_quota_ceiling, cpu_quota)),
    )


def calculate_resource_limits(
    file_sizes: Iterable[int],
    settings: RunnerSettings | None = None,
) -> ResourceLimits:
    total = sum(max(0, int(size)) for size in file_sizes)
    if settings is None:
        return estimate_resource_limits(total)
    return estimate_resource_limits(
        total,
        memory_floor=settings.memory_floor_bytes,
        memory_ceiling=settings.memory_ceiling_bytes,
        cpu_quota_floor=settings.cpu_quota_floor,
        cpu_quota_ceiling=settings.cpu_quota_ceiling,
    )
