from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from .config import load_settings
from .errors import ContainerRunnerError, ParamsError
from .logging_utils import configure_logging, log_event
from .node import RunContainerNode
from .payload import RunPayload, load_payload_input

RESULT_PREFIX = "CONTAINER_RUNNER_RESULT_JSON="
OUTPUT_FILE_ENV = "CONTAINER_RUNNER_OUTPUT_FILE"

logger = logging.getLogger(__name__)


def _error_document(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "success": False,
        "items": [],
        "error": {"code": code, "message": message, "details": details or {}},
    }


def _write_output_file(path_value: str, payload: dict[str, Any]) -> None:
    output_path = Path(path_value)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(payload, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run workflow items through Docker containers.")
    parser.add_argument(
        "--payload-file",
        default="",
        help="Path to JSON payload file (overrides env input sources).",
    )
    parser.add_argument(
        "--payload-json",
        default="",
        help="Inline JSON payload string (overrides env input sources).",
    )
    parser.add_argument(
        "--output-file",
        default="",
        help=(
            "Optional path to write structured result JSON. "
            f"Also honored via {OUTPUT_FILE_ENV}."
        ),
    )
    parser.add_argument(
        "--socket-path",
        default="",
        help="Docker socket used when the payload does not set socketPath.",
    )
    parser.add_argument("--log-level", default="", help="Logging level (default INFO).")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.socket_path:
        overrides["socket_path"] = args.socket_path
    if args.log_level:
        overrides["log_level"] = args.log_level
    settings = load_settings(overrides)
    configure_logging(settings.log_level)

    document: dict[str, Any]
    try:
        payload_raw = load_payload_input(
            payload_file=args.payload_file,
            payload_json=args.payload_json,
        )
        payload = RunPayload.from_dict(payload_raw, settings)
        node = RunContainerNode(
            settings,
            on_progress=lambda record: log_event(
                "image_pull",
                status=record.get("status"),
                layer=record.get("id"),
            ),
        )
        results = asyncio.run(
            node.execute(
                payload.items,
                payload.params,
                continue_on_fail=payload.continue_on_fail,
                concurrency=payload.concurrency,
            )
        )
        items = [result.as_dict() for result in results]
        document = {
            "success": all(result.success for result in results),
            "items": items,
            "error": None,
        }
    except ParamsError as exc:
        document = _error_document(exc.code, str(exc), exc.details)
    except ContainerRunnerError as exc:
        document = _error_document(exc.code, exc.message, {"item": getattr(exc, "item_index", None)})
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected container runner failure")
        document = _error_document("infra_error", f"Unexpected container runner failure: {exc}")

    output_file = str(args.output_file or "").strip() or os.getenv(OUTPUT_FILE_ENV, "").strip()
    if output_file:
        _write_output_file(output_file, document)

    print(f"{RESULT_PREFIX}{json.dumps(document, sort_keys=True)}", flush=True)
    return 0 if document["success"] else 1
