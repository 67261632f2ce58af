"""Per-user record of conversations that no longer owe an unread indicator."""

from __future__ import annotations

import logging
from typing import FrozenSet, Optional, Set

from campus_market.kv_store import JsonFileStore, namespaced
from campus_market.models import Conversation

logger = logging.getLogger(__name__)

READ_KEY_PREFIX = "read_conversations"


class ReadStateTracker:
    def __init__(self, store: JsonFileStore) -> None:
        self._store = store
        self._user_id: Optional[int] = None
        self._read: Set[str] = set()

    @property
    def active_user_id(self) -> Optional[int]:
        return self._user_id

    @property
    def read_ids(self) -> FrozenSet[str]:
        return frozenset(self._read)

    def load(self, user_id: Optional[int]) -> None:
        """Swap in the persisted read set of ``user_id`` (empty for ``None``)."""

        self._user_id = user_id
        self._read = set()
        if user_id is None:
            return
        stored = self._store.get(namespaced(READ_KEY_PREFIX, user_id))
        if stored is None:
            return
        if not isinstance(stored, list):
            logger.warning("Ignoring malformed read state for user %s", user_id)
            return
        self._read = {str(item) for item in stored if isinstance(item, (str, int)) and not isinstance(item, bool)}

    def mark_read(self, conversation_id: str) -> None:
        conversation_id = str(conversation_id)
        if conversation_id in self._read:
            return
        self._read.add(conversation_id)
        if self._user_id is None:
            return
        self._store.set(namespaced(READ_KEY_PREFIX, self._user_id), sorted(self._read))

    def is_read(self, conversation_id: str) -> bool:
        return str(conversation_id) in self._read

    def is_unread(self, conversation: Conversation, current_user_id: Optional[int]) -> bool:
        return conversation.last_message.sender_id != current_user_id and conversation.id not in self._read
