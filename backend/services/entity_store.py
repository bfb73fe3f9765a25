"""Entity store — the engine's only way to read and write CRM records.

Handlers and the driver depend on the ``EntityStore`` protocol; the
SQL-backed implementation keeps each operation in its own short transaction
so handlers in a parallel action group can run at the same time without
sharing a session.
"""

from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.exceptions import NotFoundError
from db.models.entity_record import EntityRecord


class EntityStore(Protocol):
    async def get(self, entity_type: str, entity_id: str) -> Optional[dict]:
        ...

    async def list(self, entity_type: str, filters: Optional[dict] = None) -> list[dict]:
        ...

    async def create(self, entity_type: str, fields: dict) -> dict:
        ...

    async def update(self, entity_type: str, entity_id: str, fields: dict) -> dict:
        ...


def _matches(record: dict, filters: dict) -> bool:
    for key, expected in filters.items():
        actual = record.get(key)
        if isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class SQLEntityStore:
    """Entity store over the ``entity_records`` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _load(self, session, entity_type: str, entity_id: str) -> Optional[EntityRecord]:
        row = await session.get(EntityRecord, entity_id)
        if row is None or row.entity_type != entity_type:
            return None
        return row

    async def get(self, entity_type: str, entity_id: str) -> Optional[dict]:
        """Get one record, or None if it does not exist."""
        if not entity_id:
            return None
        async with self._session_factory() as session:
            row = await self._load(session, entity_type, entity_id)
            return row.to_record() if row else None

    async def list(
        self,
        entity_type: str,
        filters: Optional[dict] = None,
        limit: int = 500,
    ) -> list[dict]:
        """List records of a type, filtered by field equality.

        A list/tuple/set filter value means "field is one of".
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(EntityRecord)
                .where(EntityRecord.entity_type == entity_type)
                .order_by(EntityRecord.created_at.desc())
            )
            records: Sequence[EntityRecord] = result.scalars().all()

        matched = [r.to_record() for r in records]
        if filters:
            matched = [r for r in matched if _matches(r, filters)]
        return matched[:limit]

    async def create(self, entity_type: str, fields: dict[str, Any]) -> dict:
        """Create a record. An ``id`` in ``fields`` becomes the record id."""
        data = {k: v for k, v in fields.items() if k not in ("id", "created_date")}
        row = EntityRecord(entity_type=entity_type, data=data)
        if fields.get("id"):
            row.id = str(fields["id"])
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return row.to_record()

    async def update(self, entity_type: str, entity_id: str, fields: dict[str, Any]) -> dict:
        """Merge ``fields`` into an existing record.

        Raises:
            NotFoundError: If the record does not exist
        """
        async with self._session_factory() as session:
            row = await self._load(session, entity_type, entity_id)
            if row is None:
                raise NotFoundError(f"{entity_type} '{entity_id}' not found")
            # Reassign so the JSON column is flagged dirty
            row.data = {
                **(row.data or {}),
                **{k: v for k, v in fields.items() if k not in ("id", "created_date")},
            }
            await session.commit()
            return row.to_record()
