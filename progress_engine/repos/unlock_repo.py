from __future__ import annotations

from typing import Protocol

from progress_engine.models.achievement import UnlockRecord


class UnlockRepo(Protocol):
    async def get(self, user_id: str, definition_id: str) -> UnlockRecord | None: ...
    async def list_for_user(self, user_id: str) -> list[UnlockRecord]: ...
    async def try_unlock(self, record: UnlockRecord) -> bool: ...


class InMemoryUnlockRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], UnlockRecord] = {}

    async def get(self, user_id: str, definition_id: str) -> UnlockRecord | None:
        return self._store.get((user_id, definition_id))

    async def list_for_user(self, user_id: str) -> list[UnlockRecord]:
        return [r for (uid, _), r in self._store.items() if uid == user_id and r.unlocked]

    async def try_unlock(self, record: UnlockRecord) -> bool:
        """Write the record only if absent or still locked.  Returns False if
        the user already holds this unlock; the record is write-once."""
        key = (record.user_id, record.definition_id)
        existing = self._store.get(key)
        if existing is not None and existing.unlocked:
            return False
        self._store[key] = record
        return True
