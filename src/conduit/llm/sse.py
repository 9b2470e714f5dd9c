"""
Server-Sent-Events framing.

Frames are delimited by a blank line. Bytes are buffered until a frame
is complete, so a frame split across two feed() calls (even inside a
multi-byte UTF-8 sequence) is only decoded once whole.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_DELIMITER = b"\n\n"


@dataclass(frozen=True)
class SSEFrame:
    """One complete SSE event."""

    event: str | None = None
    data: str = ""
    id: str | None = None


class SSEDecoder:
    """Incremental bytes -> SSEFrame decoder."""

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        # \r\n is normalized on the whole buffer so a pair split across chunks still joins
        self._buffer = (self._buffer + chunk).replace(b"\r\n", b"\n")
        frames: list[SSEFrame] = []
        while _DELIMITER in self._buffer:
            raw, self._buffer = self._buffer.split(_DELIMITER, 1)
            frame = self._parse(raw)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[SSEFrame]:
        """Parse whatever is left at end of stream (a final frame without a blank line)."""
        raw, self._buffer = self._buffer.strip(), b""
        if not raw:
            return []
        frame = self._parse(raw)
        return [frame] if frame is not None else []

    def reset(self) -> None:
        self._buffer = b""

    @property
    def pending(self) -> int:
        """Bytes buffered but not yet forming a complete frame."""
        return len(self._buffer)

    @staticmethod
    def _parse(raw: bytes) -> SSEFrame | None:
        text = raw.decode("utf-8", errors="replace")
        event: str | None = None
        event_id: str | None = None
        data_lines: list[str] = []

        for line in text.split("\n"):
            if not line or line.startswith(":"):
                continue  # comment / keep-alive
            field_name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field_name == "event":
                event = value.strip()
            elif field_name == "data":
                data_lines.append(value)
            elif field_name == "id":
                event_id = value
            elif field_name != "retry":
                logger.debug("Ignoring unknown SSE field: %s", field_name)

        if event is None and not data_lines:
            return None
        return SSEFrame(event=event, data="\n".join(data_lines), id=event_id)
