"""
Append-only silence log channel for the encoder alerting service.

Writes one JSON line per silence start and recovery to the configured
log file.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import structlog

from encoder_common.models import ConfigSnapshot
from encoder_common.utils import iso_utc

from .base import NotificationChannel

logger = structlog.get_logger()


class LogChannel(NotificationChannel):
    """Record silence episodes in an append-only JSON-lines file."""

    name: str = "log"

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def is_enabled(self, snapshot: ConfigSnapshot) -> bool:
        return snapshot.has_log_path()

    def _append(self, path: str, entry: dict[str, Any]) -> None:
        log_file = Path(path).expanduser()
        line = json.dumps(entry, sort_keys=True)
        with self._lock:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with log_file.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        logger.debug("silence_log_written", path=str(log_file), log_event=entry["event"])

    def send_start(self, snapshot: ConfigSnapshot, duration_ms: int) -> None:
        self._append(
            snapshot.log_path,
            {
                "timestamp": iso_utc(),
                "event": "silence_start",
                "station": snapshot.station_name,
                "threshold_db": snapshot.silence_threshold_db,
            },
        )

    def send_recovery(self, snapshot: ConfigSnapshot, total_duration_ms: int) -> None:
        self._append(
            snapshot.log_path,
            {
                "timestamp": iso_utc(),
                "event": "silence_end",
                "station": snapshot.station_name,
                "duration_ms": total_duration_ms,
                "threshold_db": snapshot.silence_threshold_db,
            },
        )
