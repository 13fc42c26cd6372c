from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TextIO

_log_sink: contextvars.ContextVar[Callable[[str], None] | None] = contextvars.ContextVar(
    "container_runner_log_sink", default=None
)
_event_stream: TextIO | None = None

logger = logging.getLogger("container_runner.events")


def configure_logging(level: str = "INFO", *, stream: TextIO | None = None) -> None:
    global _event_stream
    _event_stream = stream or sys.stderr
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=_event_stream,
    )


@contextmanager
def log_sink(sink: Callable[[str], None]) -> Iterator[None]:
    token = _log_sink.set(sink)
    try:
        yield
    finally:
        _log_sink.reset(token)


def _format_event(event: str, fields: dict[str, Any]) -> str:
    message = fields.get("message")
    if isinstance(message, str) and message.strip():
        return message
    parts: list[str] = []
    for key, value in fields.items():
        if key == "message":
            continue
        if isinstance(value, (str, int, float, bool)) or value is None:
            parts.append(f"{key}={value}")
    if parts:
        return f"{event}: " + " ".join(parts)
    return event


def log_event(event: str, **fields: Any) -> None:
    if _event_stream is not None:
        payload = {
            "event": event,
            "ts": time.time(),
            **fields,
        }
        _event_stream.write(json.dumps(payload, separators=(",", ":"), default=str) + "\n")
        _event_stream.flush()
    else:
        logger.debug(_format_event(event, fields))

    sink = _log_sink.get()
    if sink is not None:
        try:
            sink(_format_event(event, fields))
        except Exception:
            logger.debug("log sink raised while handling %s", event, exc_info=True)
