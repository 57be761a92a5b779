from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging
import re

log = logging.getLogger(__name__)

CACHE_EXT = ".json"
_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")

def sanitize_event_id(event_id: str) -> str:
    """Keep only characters that are safe in a file name: letters, digits, ``_`` and ``-``."""
    return _UNSAFE.sub("", event_id or "")

class AnnotationCache:
    """One JSON file per event id: ``{"text": ..., "meta": {...}}``."""

    def __init__(self, directory: str, ttl_sec: Optional[int] = None):
        self.directory = Path(directory)
        self.ttl_sec = ttl_sec

    def path_for(self, token: str) -> Path:
        return self.directory / f"{token}{CACHE_EXT}"

    def get(self, token: str) -> Optional[str]:
        path = self.path_for(token)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.info("Ignoring unreadable cache entry %s: %s", path.name, e)
            return None
        text = entry.get("text") if isinstance(entry, dict) else None
        if not isinstance(text, str):
            return None
        if self._expired(entry):
            log.debug("Cache entry %s expired", path.name)
            return None
        return text

    def _expired(self, entry: Dict[str, Any]) -> bool:
        if not self.ttl_sec:
            return False
        meta = entry.get("meta")
        generated = meta.get("generatedAt") if isinstance(meta, dict) else None
        if not isinstance(generated, str):
            return True
        try:
            generated_at = datetime.fromisoformat(generated.replace("Z", "+00:00"))
        except ValueError:
            return True
        if generated_at.tzinfo is None:
            # timestamps are written in UTC
            generated_at = generated_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - generated_at).total_seconds()
        return age > self.ttl_sec

    def put(self, token: str, text: str, meta: Dict[str, Any]) -> bool:
        entry = {
            "text": text,
            "meta": {**meta, "generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")},
        }
        path = self.path_for(token)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(entry, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            log.error("Failed to write cache entry %s: %s", path.name, e)
            return False
        return True
