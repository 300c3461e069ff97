"""
Logging utility with timestamps and timing support.
Provides structured, colourful console output for the crawl stages.
Optionally mirrors every line into a per-run file when WRITE_TO_FILE is set.

Timers and the log-file handle live in ``contextvars.ContextVar`` so that
two crawl runs started in the same process keep separate state.
"""

from __future__ import annotations

import contextvars
import io
import os
import pathlib
import re
import sys
import time
from datetime import UTC, datetime

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")

# ============================================================================
# Per-run state (isolated via contextvars)
# ============================================================================

_timers_var: contextvars.ContextVar[dict[str, tuple[float, str]]] = contextvars.ContextVar("_timers_var")
_log_file_stream_var: contextvars.ContextVar[io.TextIOWrapper | None] = contextvars.ContextVar(
    "_log_file_stream_var", default=None
)


def _get_timers() -> dict[str, tuple[float, str]]:
    """Return the per-context timer dict, creating it on first access."""
    try:
        return _timers_var.get()
    except LookupError:
        timers: dict[str, tuple[float, str]] = {}
        _timers_var.set(timers)
        return timers


def _debug_enabled() -> bool:
    return os.environ.get("LOG_LEVEL", "debug").lower() == "debug"


def strip_ansi(line: str) -> str:
    """Remove ANSI colour codes from *line*."""
    return _ANSI_RE.sub("", line)


# ============================================================================
# File Logging
# ============================================================================


def start_log_file(
    domain: str,
    *,
    enabled: bool | None = None,
    logs_dir: pathlib.Path | None = None,
) -> str | None:
    """Start a new log file for a crawl of *domain*.

    Args:
        domain: The crawled domain (used in the filename).
        enabled: Whether to write a file; defaults to ``WRITE_TO_FILE=true``.
        logs_dir: Directory for log files, defaults to ``./.logs``.

    Returns:
        The path of the opened file, or ``None`` if file logging is off.
    """
    if enabled is None:
        enabled = os.environ.get("WRITE_TO_FILE", "").lower() == "true"
    if not enabled:
        return None

    end_log_file()

    target_dir = logs_dir or pathlib.Path.cwd() / ".logs"
    target_dir.mkdir(parents=True, exist_ok=True)

    safe_domain = domain.removeprefix("www.")
    safe_domain = "".join(c if c.isalnum() or c in ".-" else "_" for c in safe_domain)[:50]

    now = datetime.now(UTC)
    log_file_path = target_dir / f"{safe_domain}_{now.strftime('%Y-%m-%d_%H-%M-%S')}.log"

    try:
        stream = open(log_file_path, "a", encoding="utf-8")  # noqa: SIM115
    except OSError as exc:
        print(f"\033[31m✗ [Logger] Failed to open log file: {exc}\033[0m", file=sys.stderr)
        return None

    _log_file_stream_var.set(stream)
    stream.write(f"\n{'=' * 80}\n  Crawl Log - {domain}\n  Started: {now.isoformat()}\n{'=' * 80}\n")
    return str(log_file_path)


def end_log_file() -> None:
    """Flush and close the current log file."""
    stream = _log_file_stream_var.get(None)
    if stream is None:
        return
    try:
        stream.flush()
        stream.close()
    except OSError:
        print("\033[33m⚠ [Logger] Failed to flush/close log file stream\033[0m", file=sys.stderr)
    _log_file_stream_var.set(None)


def _write_to_log_file(line: str) -> None:
    stream = _log_file_stream_var.get(None)
    if stream is None:
        return
    stream.write(strip_ansi(line) + "\n")
    stream.flush()


# ============================================================================
# ANSI Colours
# ============================================================================

_colours = {
    "reset": "\033[0m",
    "bright": "\033[1m",
    "dim": "\033[2m",
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "gray": "\033[90m",
}

_level_colour = {
    "info": _colours["cyan"],
    "success": _colours["green"],
    "warn": _colours["yellow"],
    "error": _colours["red"],
    "debug": _colours["gray"],
    "timing": _colours["magenta"],
}

_level_symbol = {
    "info": "ℹ",
    "success": "✓",
    "warn": "⚠",
    "error": "✗",
    "debug": "•",
    "timing": "⏱",
}


def _get_timestamp() -> str:
    """Return the current UTC time as HH:MM:SS.mmm."""
    now = datetime.now(UTC)
    return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


def format_duration(ms: float) -> str:
    """Format a duration in milliseconds for display."""
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60000:
        return f"{ms / 1000:.2f}s"
    minutes = int(ms // 60000)
    seconds = (ms % 60000) / 1000
    return f"{minutes}m {seconds:.1f}s"


def _format_value(value: object) -> str:
    c = _colours
    if value is None:
        return f"{c['dim']}None{c['reset']}"
    if isinstance(value, bool):
        return f"{c['green']}True{c['reset']}" if value else f"{c['red']}False{c['reset']}"
    if isinstance(value, (int, float)):
        return f"{c['yellow']}{value}{c['reset']}"
    if isinstance(value, str):
        display = value[:297] + "..." if len(value) > 300 else value
        return f'{c["green"]}"{display}"{c["reset"]}'
    if isinstance(value, (list, tuple)):
        return f"{c['cyan']}[{len(value)} items]{c['reset']}"
    if isinstance(value, dict):
        return f"{c['cyan']}{{{len(value)} keys}}{c['reset']}"
    return str(value)


# ============================================================================
# Logger Class
# ============================================================================


class Logger:
    """Structured logger with context prefix and timing support."""

    def __init__(self, context: str = "Crawl") -> None:
        self._context = context

    def _emit(self, line: str) -> None:
        print(line, file=sys.stderr)
        _write_to_log_file(line)

    def _log(self, level: str, message: str, data: dict[str, object] | None = None) -> None:
        if level == "debug" and not _debug_enabled():
            return
        c = _colours
        colour = _level_colour.get(level, c["cyan"])
        symbol = _level_symbol.get(level, "ℹ")
        prefix = (
            f"{c['gray']}[{_get_timestamp()}]{c['reset']} {colour}{symbol}{c['reset']} "
            f"{c['bright']}[{self._context}]{c['reset']}"
        )
        if data:
            data_str = " ".join(f"{c['dim']}{k}={c['reset']}{_format_value(v)}" for k, v in data.items())
            self._emit(f"{prefix} {message} {data_str}")
        else:
            self._emit(f"{prefix} {message}")

    def info(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log an informational message."""
        self._log("info", message, data)

    def success(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a success message."""
        self._log("success", message, data)

    def warn(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a warning message."""
        self._log("warn", message, data)

    def error(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log an error message."""
        self._log("error", message, data)

    def debug(self, message: str, data: dict[str, object] | None = None) -> None:
        """Log a debug-level message (suppressed unless LOG_LEVEL=debug)."""
        self._log("debug", message, data)

    def start_timer(self, label: str) -> None:
        """Start a named timer for performance measurement."""
        key = f"{self._context}:{label}"
        _get_timers()[key] = (time.monotonic() * 1000, _get_timestamp())
        self._log("timing", f"Starting: {label}")

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop a named timer, log the elapsed time and return it in ms."""
        key = f"{self._context}:{label}"
        entry = _get_timers().pop(key, None)
        if entry is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0

        start_ms, start_ts = entry
        duration = time.monotonic() * 1000 - start_ms
        c = _colours
        self._log(
            "timing",
            f"{message or f'Completed: {label}'} {c['dim']}took{c['reset']} "
            f"{c['magenta']}{format_duration(duration)}{c['reset']} {c['dim']}(started {start_ts}){c['reset']}",
        )
        return duration

    def section(self, title: str) -> None:
        """Print a prominent section divider with *title*."""
        c = _colours
        line = "─" * 60
        for ln in ("", f"{c['blue']}{line}{c['reset']}", f"{c['blue']}{c['bright']}  {title}{c['reset']}",
                   f"{c['blue']}{line}{c['reset']}", ""):
            self._emit(ln)


def create_logger(context: str) -> Logger:
    """Create a logger for a specific module."""
    return Logger(context)
