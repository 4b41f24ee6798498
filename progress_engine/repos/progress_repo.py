from __future__ import annotations

from typing import Protocol

from progress_engine.models.progress import PathProgress, StreakData, TopicProgress


class ProgressStore(Protocol):
    """Narrow accessor over durable per-user progress aggregates.

    Writes are compare-and-set on `version`: the write succeeds only if the
    stored aggregate still has `expected_version` (0 means "absent"), and the
    caller passes the aggregate already carrying `expected_version + 1`.
    A False return is a version conflict, never an error.
    """

    async def get_topic(self, user_id: str, topic_id: str) -> TopicProgress | None: ...
    async def list_topics(self, user_id: str) -> list[TopicProgress]: ...
    async def compare_and_set_topic(
        self, progress: TopicProgress, expected_version: int
    ) -> bool: ...

    async def get_path(self, user_id: str, path_id: str) -> PathProgress | None: ...
    async def list_paths(self, user_id: str) -> list[PathProgress]: ...
    async def compare_and_set_path(
        self, progress: PathProgress, expected_version: int
    ) -> bool: ...

    async def get_streak(self, user_id: str) -> StreakData | None: ...
    async def compare_and_set_streak(
        self, streak: StreakData, expected_version: int
    ) -> bool: ...


class InMemoryProgressStore:
    """Dict-backed store for dev/test.

    Each compare-and-set reads and writes without an `await` in between, so
    it is atomic with respect to other coroutines on the event loop.
    """

    def __init__(self) -> None:
        self._topics: dict[tuple[str, str], TopicProgress] = {}
        self._paths: dict[tuple[str, str], PathProgress] = {}
        self._streaks: dict[str, StreakData] = {}

    async def get_topic(self, user_id: str, topic_id: str) -> TopicProgress | None:
        return self._topics.get((user_id, topic_id))

    async def list_topics(self, user_id: str) -> list[TopicProgress]:
        return [t for (uid, _), t in self._topics.items() if uid == user_id]

    async def compare_and_set_topic(
        self, progress: TopicProgress, expected_version: int
    ) -> bool:
        key = (progress.user_id, progress.topic_id)
        if _version_of(self._topics.get(key)) != expected_version:
            return False
        self._topics[key] = progress
        return True

    async def get_path(self, user_id: str, path_id: str) -> PathProgress | None:
        return self._paths.get((user_id, path_id))

    async def list_paths(self, user_id: str) -> list[PathProgress]:
        return [p for (uid, _), p in self._paths.items() if uid == user_id]

    async def compare_and_set_path(
        self, progress: PathProgress, expected_version: int
    ) -> bool:
        key = (progress.user_id, progress.path_id)
        if _version_of(self._paths.get(key)) != expected_version:
            return False
        self._paths[key] = progress
        return True

    async def get_streak(self, user_id: str) -> StreakData | None:
        return self._streaks.get(user_id)

    async def compare_and_set_streak(
        self, streak: StreakData, expected_version: int
    ) -> bool:
        if _version_of(self._streaks.get(streak.user_id)) != expected_version:
            return False
        self._streaks[streak.user_id] = streak
        return True

    def clear(self) -> None:
        self._topics.clear()
        self._paths.clear()
        self._streaks.clear()


def _version_of(current: TopicProgress | PathProgress | StreakData | None) -> int:
    return 0 if current is None else current.version
