from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from .errors import MissingParameter, Unauthenticated
from .models import UserRecord
from .snapshot import SnapshotStore, user_key
from .store import UserStore

LOGGER = logging.getLogger("ghbridge.users")


class UserDirectory:
    """Read-through access to user records.

    The snapshot is consulted first and filled on a miss. Every save goes to
    the durable store and then rewrites the ``user_<chat>`` snapshot entry,
    so the two only diverge when the process dies between those two steps.
    """

    def __init__(self, store: UserStore, snapshot: SnapshotStore) -> None:
        self.store = store
        self.snapshot = snapshot

    def _cached(self, chat_id: str) -> Optional[UserRecord]:
        cached = self.snapshot.read(user_key(chat_id))
        if not cached:
            return None
        try:
            return UserRecord.model_validate(cached)
        except ValidationError as exc:
            LOGGER.warning("Discarding unreadable snapshot entry for chat_id=%s: %s", chat_id, exc)
            return None

    def _remember(self, record: UserRecord) -> None:
        self.snapshot.write(user_key(record.chat_id), record.model_dump(mode="json"))

    def get(self, chat_id: str) -> Optional[UserRecord]:
        if not chat_id:
            raise MissingParameter("chat_id")
        record = self._cached(chat_id)
        if record is not None:
            return record
        record = self.store.get(chat_id)
        if record is not None:
            self._remember(record)
        return record

    def get_fresh(self, chat_id: str) -> Optional[UserRecord]:
        """Skip the snapshot; used wherever a token is about to be spent."""
        if not chat_id:
            raise MissingParameter("chat_id")
        record = self.store.get(chat_id)
        if record is not None:
            self._remember(record)
        return record

    def require_linked(self, chat_id: str) -> UserRecord:
        record = self.get_fresh(chat_id)
        if record is None or not record.github_token:
            raise Unauthenticated()
        return record

    def save(self, record: UserRecord) -> UserRecord:
        saved = self.store.save(record)
        self._remember(saved)
        return saved
