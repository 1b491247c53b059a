"""
NDJSON lifecycle events (logs/events.ndjson)
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from taskrelay.config import config

logger = logging.getLogger(__name__)

EVENTS_FILE = "events.ndjson"
_MAX_BYTES = 1_000_000
_BACKUP_COUNT = 3


def events_path(logs_dir: Optional[str] = None) -> Path:
    return Path(logs_dir or config.system.logs_dir) / EVENTS_FILE


def emit_event(name: str, logs_dir: Optional[str] = None, **fields: Any) -> None:
    """Append a single NDJSON event line. Never raises."""
    try:
        path = events_path(logs_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "event": name,
        }
        payload.update({k: v for k, v in fields.items() if v is not None})
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        _rotate(path)
    except Exception as e:
        # Telemetry must not fail a run
        logger.debug(f"event emission failed: {e}")


def _rotate(path: Path) -> None:
    """Simple size-based rotation: events.ndjson -> .1 -> .2 -> .3"""
    if path.stat().st_size <= _MAX_BYTES:
        return
    for idx in range(_BACKUP_COUNT - 1, 0, -1):
        src = path.with_suffix(path.suffix + f".{idx}")
        dst = path.with_suffix(path.suffix + f".{idx + 1}")
        if src.exists():
            src.replace(dst)
    path.replace(path.with_suffix(path.suffix + ".1"))
    path.touch()


def read_events(lines: int = 20, logs_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return the last `lines` events, skipping malformed lines."""
    path = events_path(logs_dir)
    if not path.exists():
        return []
    events: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return events[-lines:]
