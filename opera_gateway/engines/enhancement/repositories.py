"""
Enhancement Repositories

Data access for the processing history table.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from opera_gateway.core.exceptions import HistoryWriteError
from opera_gateway.engines.enhancement.models import HistoryEntry


class HistoryRepository:
    """Append-only access to processing_history. Opens one session per write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, entry: HistoryEntry) -> HistoryEntry:
        try:
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
                await session.refresh(entry)
                return entry
        except SQLAlchemyError as e:
            raise HistoryWriteError(
                f"Failed to write processing history: {e}",
                job_id=entry.job_id,
            )

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[HistoryEntry]:
        async with self.session_factory() as session:
            statement = (
                select(HistoryEntry)
                .where(HistoryEntry.user_id == user_id)
                .order_by(HistoryEntry.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(statement)
            return list(result.scalars().all())
