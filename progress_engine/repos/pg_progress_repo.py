"""PostgreSQL implementation of ProgressStore.

Compare-and-set maps onto a single conditional statement:
  - expected_version == 0  ->  INSERT ... ON CONFLICT DO NOTHING
  - otherwise              ->  UPDATE ... WHERE version = :expected
A rowcount of 1 means we won; 0 means someone else wrote first.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.db.tables import PathProgressRow, StreakRow, TopicProgressRow
from progress_engine.models.progress import PathProgress, StreakData, TopicProgress


class PgProgressStore:
    """Satisfies the ProgressStore Protocol.  One short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_topic(self, user_id: str, topic_id: str) -> TopicProgress | None:
        stmt = select(TopicProgressRow).where(
            TopicProgressRow.user_id == user_id, TopicProgressRow.topic_id == topic_id
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_topic(row)

    async def list_topics(self, user_id: str) -> list[TopicProgress]:
        stmt = select(TopicProgressRow).where(TopicProgressRow.user_id == user_id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_topic(r) for r in rows]

    async def compare_and_set_topic(
        self, progress: TopicProgress, expected_version: int
    ) -> bool:
        return await self._compare_and_set(
            TopicProgressRow,
            {"user_id": progress.user_id, "topic_id": progress.topic_id},
            {
                "status": progress.status,
                "depth_levels_completed": sorted(progress.depth_levels_completed),
                "first_visited": progress.first_visited,
                "last_visited": progress.last_visited,
                "time_spent_seconds": progress.time_spent_seconds,
                "completion_percentage": progress.completion_percentage,
                "rating": progress.rating,
                "bookmarked": progress.bookmarked,
                "applied_event_ids": sorted(progress.applied_event_ids),
                "version": progress.version,
            },
            expected_version,
        )

    async def get_path(self, user_id: str, path_id: str) -> PathProgress | None:
        stmt = select(PathProgressRow).where(
            PathProgressRow.user_id == user_id, PathProgressRow.path_id == path_id
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_path(row)

    async def list_paths(self, user_id: str) -> list[PathProgress]:
        stmt = select(PathProgressRow).where(PathProgressRow.user_id == user_id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_path(r) for r in rows]

    async def compare_and_set_path(
        self, progress: PathProgress, expected_version: int
    ) -> bool:
        return await self._compare_and_set(
            PathProgressRow,
            {"user_id": progress.user_id, "path_id": progress.path_id},
            {
                "total_steps": progress.total_steps,
                "status": progress.status,
                "current_step": progress.current_step,
                "steps_completed": sorted(progress.steps_completed),
                "started_at": progress.started_at,
                "last_accessed_at": progress.last_accessed_at,
                "applied_event_ids": sorted(progress.applied_event_ids),
                "version": progress.version,
            },
            expected_version,
        )

    async def get_streak(self, user_id: str) -> StreakData | None:
        stmt = select(StreakRow).where(StreakRow.user_id == user_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return StreakData(
            user_id=row.user_id,
            current=row.current,
            longest=row.longest,
            last_active_date=row.last_active_date,
            version=row.version,
        )

    async def compare_and_set_streak(
        self, streak: StreakData, expected_version: int
    ) -> bool:
        return await self._compare_and_set(
            StreakRow,
            {"user_id": streak.user_id},
            {
                "current": streak.current,
                "longest": streak.longest,
                "last_active_date": streak.last_active_date,
                "version": streak.version,
            },
            expected_version,
        )

    async def _compare_and_set(
        self,
        table: Any,
        keys: dict[str, Any],
        values: dict[str, Any],
        expected_version: int,
    ) -> bool:
        if expected_version == 0:
            stmt = (
                pg_insert(table)
                .values(**keys, **values)
                .on_conflict_do_nothing(index_elements=list(keys))
            )
        else:
            conditions = [getattr(table, k) == v for k, v in keys.items()]
            stmt = (
                update(table)
                .where(*conditions, table.version == expected_version)
                .values(**values)
            )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount == 1


def _row_to_topic(row: TopicProgressRow) -> TopicProgress:
    return TopicProgress(
        user_id=row.user_id,
        topic_id=row.topic_id,
        status=row.status,  # type: ignore[arg-type]
        depth_levels_completed=frozenset(row.depth_levels_completed or ()),  # type: ignore
        first_visited=row.first_visited,
        last_visited=row.last_visited,
        time_spent_seconds=row.time_spent_seconds,
        completion_percentage=row.completion_percentage,
        rating=row.rating,
        bookmarked=row.bookmarked,
        applied_event_ids=frozenset(row.applied_event_ids or ()),
        version=row.version,
    )


def _row_to_path(row: PathProgressRow) -> PathProgress:
    return PathProgress(
        user_id=row.user_id,
        path_id=row.path_id,
        total_steps=row.total_steps,
        status=row.status,  # type: ignore[arg-type]
        current_step=row.current_step,
        steps_completed=frozenset(row.steps_completed or ()),
        started_at=row.started_at,
        last_accessed_at=row.last_accessed_at,
        applied_event_ids=frozenset(row.applied_event_ids or ()),
        version=row.version,
    )
