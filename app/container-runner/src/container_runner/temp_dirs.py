from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from .errors import CleanupError

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "container-runner-"


def _remove_tree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)


class TempResourceGuard:
    """Tracks temp directories so each one is released exactly once.

    Releases never raise: failures are logged and returned as CleanupError
    values so one item's cleanup cannot fail another.
    """

    def __init__(self, root: str | None = None, *, prefix: str = TEMP_DIR_PREFIX) -> None:
        self._root = root
        self._prefix = prefix
        self._held: set[Path] = set()

    @property
    def held(self) -> frozenset[Path]:
        return frozenset(self._held)

    async def acquire(self) -> Path:
        if self._root:
            await asyncio.to_thread(Path(self._root).mkdir, parents=True, exist_ok=True)
        path = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=self._prefix, dir=self._root))
        self._held.add(path)
        logger.debug("Acquired temp directory %s", path)
        return path

    async def release(self, path: Path) -> CleanupError | None:
        path = Path(path)
        if path not in self._held:
            return None
        self._held.discard(path)
        try:
            await asyncio.to_thread(_remove_tree, path)
        except OSError as exc:
            logger.warning("Failed to remove temp directory %s: %s", path, exc)
            return CleanupError(str(path), f"Failed to remove temp directory {path}: {exc}")
        logger.debug("Released temp directory %s", path)
        return None

    async def release_all(self) -> list[CleanupError]:
        outcomes = await asyncio.gather(
            *(self.release(path) for path in sorted(self._held)),
            return_exceptions=True,
        )
        errors: list[CleanupError] = []
        for outcome in outcomes:
            if isinstance(outcome, CleanupError):
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                logger.warning("Unexpected temp directory cleanup failure: %s", outcome)
                errors.append(CleanupError("", str(outcome)))
        return errors

    @asynccontextmanager
    async def scoped(self) -> AsyncIterator[Path]:
        path = await self.acquire()
        try:
            yield path
        finally:
            await self.release(path)
