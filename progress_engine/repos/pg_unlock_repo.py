"""PostgreSQL implementation of UnlockRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.db.tables import UnlockRecordRow
from progress_engine.models.achievement import UnlockRecord


class PgUnlockRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str, definition_id: str) -> UnlockRecord | None:
        stmt = select(UnlockRecordRow).where(
            UnlockRecordRow.user_id == user_id,
            UnlockRecordRow.definition_id == definition_id,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_record(row)

    async def list_for_user(self, user_id: str) -> list[UnlockRecord]:
        stmt = (
            select(UnlockRecordRow)
            .where(UnlockRecordRow.user_id == user_id, UnlockRecordRow.unlocked.is_(True))
            .order_by(UnlockRecordRow.unlocked_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_record(r) for r in rows]

    async def try_unlock(self, record: UnlockRecord) -> bool:
        """Insert, or flip a still-locked row.  Never touches an unlocked row."""
        values = {
            "user_id": record.user_id,
            "definition_id": record.definition_id,
            "kind": record.kind,
            "unlocked": record.unlocked,
            "unlocked_at": record.unlocked_at,
            "triggering_event_id": record.triggering_event_id,
            "points": record.points,
        }
        stmt = pg_insert(UnlockRecordRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "definition_id"],
            set_={k: stmt.excluded[k] for k in values if k not in ("user_id", "definition_id")},
            where=UnlockRecordRow.unlocked.is_(False),
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount == 1


def _row_to_record(row: UnlockRecordRow) -> UnlockRecord:
    return UnlockRecord(
        user_id=row.user_id,
        definition_id=row.definition_id,
        kind=row.kind,  # type: ignore[arg-type]
        unlocked=row.unlocked,
        unlocked_at=row.unlocked_at,  # type: ignore[arg-type]
        triggering_event_id=row.triggering_event_id or "",
        points=row.points,
    )
