from __future__ import annotations

STREAM_STDOUT = 1
STREAM_STDERR = 2
HEADER_SIZE = 8


def demultiplex_log_stream(raw: bytes) -> tuple[bytes, bytes]:
    """Split the engine's multiplexed log stream into stdout and stderr bytes.

    Each frame is an 8-byte header (stream tag, three reserved bytes, big-endian
    u32 payload length) followed by the payload. Frames tagged with anything
    other than stdout/stderr are skipped; a truncated trailing frame is dropped.
    """
    if not raw:
        return b"", b""
    stdout_parts: list[bytes] = []
    stderr_parts: list[bytes] = []
    index = 0
    total = len(raw)
    while index + HEADER_SIZE <= total:
        stream_type = raw[index]
        frame_size = int.from_bytes(raw[index + 4 : index + HEADER_SIZE], "big")
        frame_start = index + HEADER_SIZE
        frame_end = frame_start + frame_size
        if frame_end > total:
            break
        if stream_type == STREAM_STDOUT:
            stdout_parts.append(raw[frame_start:frame_end])
        elif stream_type == STREAM_STDERR:
            stderr_parts.append(raw[frame_start:frame_end])
        index = frame_end
    return b"".join(stdout_parts), b"".join(stderr_parts)


def decode_log_stream(raw: bytes) -> tuple[str, str]:
    stdout, stderr = demultiplex_log_stream(raw)
    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
