from __future__ import annotations

import logging
import os
import stat
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import DEFAULT_SOCKET_PATH

logger = logging.getLogger(__name__)

PROVENANCE_CONFIGURED = "configured"
PROVENANCE_PLATFORM_FALLBACK = "platform-fallback"


@dataclass(frozen=True)
class SocketResolution:
    path: str
    provenance: str
    exists: bool


def stat_is_socket(path: str) -> bool:
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return stat.S_ISSOCK(mode)


def extract_socket_path(docker_host: str) -> str:
    normalized = str(docker_host or "").strip()
    if not normalized:
        return DEFAULT_SOCKET_PATH
    if normalized.startswith("unix://"):
        return normalized[len("unix://") :]
    return normalized


def platform_socket_candidates(
    platform: str | None = None,
    *,
    home: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[str]:
    platform = platform or sys.platform
    env = os.environ if environ is None else environ
    home_dir = Path(home) if home is not None else Path.home()

    if platform == "darwin":
        return [
            str(home_dir / ".docker" / "run" / "docker.sock"),
            str(home_dir / ".docker" / "desktop" / "docker.sock"),
            str(home_dir / ".colima" / "default" / "docker.sock"),
            str(home_dir / ".orbstack" / "run" / "docker.sock"),
            str(home_dir / ".rd" / "docker.sock"),
            DEFAULT_SOCKET_PATH,
        ]

    candidates: list[str] = []
    runtime_dir = str(env.get("XDG_RUNTIME_DIR") or "").strip()
    if runtime_dir:
        candidates.append(str(Path(runtime_dir) / "docker.sock"))
    candidates.extend(
        [
            str(home_dir / ".docker" / "desktop" / "docker.sock"),
            "/run/docker.sock",
            DEFAULT_SOCKET_PATH,
        ]
    )
    return candidates


def resolve_socket_path(
    candidate: str | None,
    *,
    platform: str | None = None,
    home: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    is_socket: Callable[[str], bool] = stat_is_socket,
) -> SocketResolution:
    """Find a reachable engine socket, falling back to per-platform locations.

    Resolution never fails: when no candidate exists the configured path is
    returned unchanged and the first connection attempt reports the error.
    """
    configured = extract_socket_path(candidate or "")
    if is_socket(configured):
        return SocketResolution(configured, PROVENANCE_CONFIGURED, True)

    for fallback in platform_socket_candidates(platform, home=home, environ=environ):
        if fallback == configured:
            continue
        if is_socket(fallback):
            logger.info(
                "Docker socket %s not found; using platform fallback %s",
                configured,
                fallback,
            )
            return SocketResolution(fallback, PROVENANCE_PLATFORM_FALLBACK, True)

    logger.debug("No Docker socket found; keeping configured path %s", configured)
    return SocketResolution(configured, PROVENANCE_CONFIGURED, False)
