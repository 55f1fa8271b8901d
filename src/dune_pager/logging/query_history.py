from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_PATH = Path.home() / ".dune_pager" / "logs" / "queries.jsonl"


class QueryHistory:
    """Append-only JSONL log of orchestrated executions."""

    def __init__(self, history_path: Path):
        self.history_path = Path(history_path)
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> QueryHistory | None:
        raw = os.getenv("DUNE_QUERY_HISTORY")
        if raw is not None and raw.strip().lower() in ("disabled", "off", "none", ""):
            return None
        return cls(Path(raw).expanduser() if raw else DEFAULT_HISTORY_PATH)

    def record(self, *, action: str, status: str, **fields: Any) -> None:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "status": status,
            **fields,
        }
        line = json.dumps(entry, default=str)
        try:
            with self._lock:
                self.history_path.parent.mkdir(parents=True, exist_ok=True)
                with self.history_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            logger.warning("could not write query history to %s: %s", self.history_path, exc)
