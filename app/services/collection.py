"""Read access to users' media collections."""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import MediaItemRecord
from ..errors import CollectionError
from ..models import CollectionItem

logger = logging.getLogger(__name__)


class CollectionProvider(Protocol):
    """Supplies the items that get summarised into prompts."""

    async def get_all_items_for_user(self, user_id: str) -> list[CollectionItem]:
        ...


class CollectionRepository:
    """Loads collection items from the tracker's ``media_items`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_all_items_for_user(self, user_id: str) -> list[CollectionItem]:
        """Return every item the user owns, newest first.

        A row that does not map onto :class:`CollectionItem` fails the whole
        call rather than yielding a partial collection.
        """

        statement = (
            select(MediaItemRecord)
            .where(MediaItemRecord.user_id == user_id)
            .order_by(MediaItemRecord.created_at.desc(), MediaItemRecord.id.desc())
        )
        async with self._session_factory() as session:
            records = (await session.execute(statement)).scalars().all()

        items: list[CollectionItem] = []
        for record in records:
            try:
                items.append(self._record_to_item(record))
            except ValidationError as exc:
                logger.error(
                    "Malformed media item %s for user %s: %s", record.id, user_id, exc
                )
                raise CollectionError(f"scan item {record.id}: {exc}") from exc
        return items

    @staticmethod
    def _record_to_item(record: MediaItemRecord) -> CollectionItem:
        return CollectionItem(
            title=record.title,
            media_type=record.media_type,
            creator=record.creator or "",
            genre=list(record.genre or []),
            status=record.status or "owned",
        )
