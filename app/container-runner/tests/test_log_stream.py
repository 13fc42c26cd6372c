from __future__ import annotations

import sys
import unittest
from pathlib import Path

SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from container_runner.log_stream import decode_log_stream, demultiplex_log_stream

from helpers import frame


class LogStreamTests(unittest.TestCase):
    def test_frames_are_split_by_stream_in_order(self) -> None:
        raw = (
            frame(1, b"hello ")
            + frame(2, b"warn\n")
            + frame(1, b"world\n")
            + frame(2, b"")
        )
        stdout, stderr = demultiplex_log_stream(raw)
        self.assertEqual(b"hello world\n", stdout)
        self.assertEqual(b"warn\n", stderr)

    def test_empty_input_yields_empty_streams(self) -> None:
        self.assertEqual((b"", b""), demultiplex_log_stream(b""))

    def test_truncated_trailing_frame_is_dropped(self) -> None:
        complete = frame(1, b"kept")
        truncated_payload = frame(2, b"lost-bytes")[:-3]
        truncated_header = frame(1, b"x")[:5]
        self.assertEqual((b"kept", b""), demultiplex_log_stream(complete + truncated_payload))
        self.assertEqual((b"kept", b""), demultiplex_log_stream(complete + truncated_header))

    def test_unknown_stream_tags_are_skipped(self) -> None:
        raw = frame(0, b"stdin?") + frame(3, b"system") + frame(1, b"out")
        self.assertEqual((b"out", b""), demultiplex_log_stream(raw))

    def test_large_frame_length_uses_big_endian(self) -> None:
        payload = b"a" * 70_000
        stdout, _ = demultiplex_log_stream(frame(1, payload))
        self.assertEqual(payload, stdout)

    def test_decode_replaces_invalid_utf8(self) -> None:
        stdout, stderr = decode_log_stream(frame(1, b"ok \xff") + frame(2, "é".encode("utf-8")))
        self.assertEqual("ok �", stdout)
        self.assertEqual("é", stderr)


if __name__ == "__main__":
    unittest.main()
