from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER = logging.getLogger("ghbridge.snapshot")

LAST_UPDATED_KEY = "lastUpdated"


def user_key(chat_id: str) -> str:
    return f"user_{chat_id}"


def repos_key(chat_id: str) -> str:
    return f"repos_{chat_id}"


def oauth_key(chat_id: str) -> str:
    return f"oauth_{chat_id}"


class SnapshotStore:
    """Whole-file JSON cache kept next to the process.

    The file survives restarts of an ephemeral host and is never
    authoritative: every read failure is reported as a miss and every write
    failure is logged and dropped. Each write rereads the file, merges one
    key and rewrites it, so writers in other processes race last-write-wins.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to read snapshot %s: %s", self.path, exc)
            return {}
        if not isinstance(loaded, dict):
            LOGGER.warning("Snapshot %s is not a JSON object; ignoring it", self.path)
            return {}
        return loaded

    def _dump(self, snapshot: Dict[str, Any]) -> None:
        snapshot[LAST_UPDATED_KEY] = datetime.now(timezone.utc).isoformat()
        text = json.dumps(snapshot, indent=2)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            handle.write(text)

    def read(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            snapshot = self._load()
            snapshot[key] = value
            try:
                self._dump(snapshot)
            except (OSError, TypeError, ValueError) as exc:
                LOGGER.warning("Failed to write snapshot key=%s: %s", key, exc)

    def delete(self, key: str) -> None:
        with self._lock:
            snapshot = self._load()
            if key not in snapshot:
                return
            snapshot.pop(key)
            try:
                self._dump(snapshot)
            except (OSError, TypeError, ValueError) as exc:
                LOGGER.warning("Failed to drop snapshot key=%s: %s", key, exc)
