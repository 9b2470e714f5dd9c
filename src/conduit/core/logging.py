"""
Conduit Logging — colorized for humans, JSON for machines.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (CONDUIT_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (httpx, httpcore, uvicorn.access)
- Configurable via CONDUIT_LOG_LEVEL, CONDUIT_LOG_COLOR, CONDUIT_LOG_FORMAT
- StageTimer for per-state turn latency (streaming, executing, awaiting_decision)

Structured log extra fields (pass via logger.info(..., extra={...})):
    session_id, turn_id, provider, tool_call_id, attempts, duration_ms, state
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}

# Structured fields forwarded from logger.info(..., extra={...})
STRUCTURED_FIELDS = (
    "session_id",
    "turn_id",
    "provider",
    "tool_call_id",
    "attempts",
    "duration_ms",
    "state",
)


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s%(context)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        pairs = [
            f"{key}={getattr(record, key)}"
            for key in STRUCTURED_FIELDS
            if hasattr(record, key)
        ]
        record.context = f" ({', '.join(pairs)})" if pairs else ""

        if not self.use_color:
            return super().format(record)

        orig_levelname = record.levelname
        orig_name = record.name
        reset = COLORS["RESET"]
        record.levelname = f"{COLORS.get(record.levelname, '')}{record.levelname}{reset}"
        record.name = f"{COLORS['DIM']}{record.name}{reset}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname
            record.name = orig_name


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation.

    Each log line is a single JSON object. Extra fields passed via
    logger.info("msg", extra={"session_id": "...", "duration_ms": 42})
    are included at the top level for easy querying.

    Enable with: CONDUIT_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StageTimer:
    """Accumulates wall time per turn stage across rounds.

    Usage:
        timer = StageTimer()
        timer.enter("streaming")
        # ... consume the stream ...
        timer.enter("executing")
        # ... run tools ...
        timer.stop()
        timer.summary()  # -> "streaming: 1.2s | executing: 0.3s | Total: 1.5s"
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._start = clock()
        self._current: tuple[str, float] | None = None
        self.totals: dict[str, float] = {}

    def enter(self, stage: str) -> None:
        """Close the running stage (if any) and start timing a new one."""
        now = self._clock()
        self._close(now)
        self._current = (stage, now)

    def stop(self) -> None:
        self._close(self._clock())
        self._current = None

    def _close(self, now: float) -> None:
        if self._current is None:
            return
        stage, started = self._current
        self.totals[stage] = self.totals.get(stage, 0.0) + (now - started)

    def total(self) -> float:
        return self._clock() - self._start

    def summary(self) -> str:
        parts = [f"{stage}: {elapsed:.1f}s" for stage, elapsed in self.totals.items()]
        parts.append(f"Total: {self.total():.1f}s")
        return " | ".join(parts)


def _should_use_color() -> bool:
    env_val = os.getenv("CONDUIT_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure logging for the entire application.

    Call this once at startup.

    Env vars:
        CONDUIT_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        CONDUIT_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
        CONDUIT_LOG_FORMAT — text / json (default: text)
    """
    level_name = os.getenv("CONDUIT_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("CONDUIT_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for noisy_logger in [
        "httpx",
        "httpcore",
        "httpcore.http11",
        "httpcore.connection",
        "aiosqlite",
        "uvicorn.access",
    ]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("conduit").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
