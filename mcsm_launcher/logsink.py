"""Combined launcher log, one append-only file plus console mirroring.

Every line is prefixed with an ISO-8601 UTC timestamp; error records also
carry an ``[ERROR]`` marker:

    [2024-05-01T09:30:00.123Z] [Web] listening on :23333
    [2024-05-01T09:30:01.456Z] [ERROR] [Daemon ERROR] EADDRINUSE
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

PACKAGE_LOGGER = "mcsm_launcher"


class LauncherFormatter(logging.Formatter):
    """Formats records as ``[timestamp] [ERROR] message``."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        marker = "[ERROR] " if record.levelno >= logging.ERROR else ""
        line = f"[{self.formatTime(record)}] {marker}{record.getMessage()}"
        if record.exc_info:
            if not record.exc_text:
                record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


class LogSink(logging.Handler):
    """Append-only log file that stays open until :meth:`close`.

    Unlike ``logging.FileHandler`` it never reopens the file: once closed,
    further records are silently dropped.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._stream: TextIO | None = open(self.path, "a", encoding="utf-8")
        self.setFormatter(LauncherFormatter())

    @property
    def closed(self) -> bool:
        return self._stream is None

    def emit(self, record: logging.LogRecord) -> None:
        if self._stream is None:
            return
        try:
            self._stream.write(self.format(record) + "\n")
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.flush()
                stream.close()
        finally:
            self.release()
        super().close()


class _BelowError(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


def setup_logging(log_path: str | Path, level: int = logging.INFO) -> LogSink:
    """Attach the sink and the stdout/stderr mirrors to the package logger.

    INFO lines go to stdout, ERROR lines to stderr, everything to the file.
    The package logger does not propagate, so a root handler installed by
    ``logging.basicConfig`` for third-party libraries won't duplicate lines.
    """
    formatter = LauncherFormatter()

    sink = LogSink(log_path)

    out = logging.StreamHandler(sys.stdout)
    out.addFilter(_BelowError())
    out.setFormatter(formatter)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.ERROR)
    err.setFormatter(formatter)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False
    for handler in (sink, out, err):
        logger.addHandler(handler)
    return sink
