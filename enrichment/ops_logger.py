from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class OpsLogger:
    """Append-only JSONL logger for per-job operational records.

    - One JSON object per line (UTF-8, newline-delimited)
    - Thread-safe (coarse lock)
    - Best-effort: never raises to caller
    """

    def __init__(self, file_path: Path, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path)
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("ops log directory unavailable: %s", e)

    def emit(self, record: Dict[str, Any]) -> None:
        try:
            line = json.dumps({"enrich_ops": 1, **record}, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            line = json.dumps({"enrich_ops": 1, "_serialization_error": True, "record_str": str(record)})
        try:
            with self._lock:
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
        except OSError as e:
            logger.debug("ops log write failed: %s", e)
        if self.also_stdout:
            print(line)
