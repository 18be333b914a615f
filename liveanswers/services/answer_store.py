import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liveanswers.core.errors import ChangeFeedError, NotFoundError, StorageError
from liveanswers.models.orm import Answer
from liveanswers.models.schemas import AnswerContent, AnswerOut
from liveanswers.services.change_feed import INSERT, UPDATE, ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)


class AnswerStore:
    """Source of truth for answers. Every committed write is announced on ``feed``."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], feed: ChangeFeed):
        self._sessionmaker = sessionmaker
        self.feed = feed

    async def create(self, owner_id: str, session_id: str, question_id: str, content: AnswerContent) -> AnswerOut:
        row = Answer(owner_id=owner_id, session_id=session_id, question_id=question_id, content=content.model_dump())
        try:
            async with self._sessionmaker() as db:
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as exc:
            logger.error("Error creating answer for question %s: %s", question_id, exc)
            raise StorageError() from exc
        await self._announce(INSERT, row)
        return AnswerOut.from_record(row)

    async def update(self, owner_id: str, answer_id: str, content: AnswerContent) -> AnswerOut:
        """Replace the content of an answer owned by ``owner_id``."""
        try:
            async with self._sessionmaker() as db:
                row = await db.scalar(select(Answer).where(Answer.owner_id == owner_id, Answer.id == answer_id))
                if row is None:
                    raise NotFoundError("Answer not found")
                row.content = content.model_dump()
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as exc:
            logger.error("Error updating answer %s: %s", answer_id, exc)
            raise StorageError() from exc
        await self._announce(UPDATE, row)
        return AnswerOut.from_record(row)

    async def get(self, answer_id: str) -> Optional[AnswerOut]:
        try:
            async with self._sessionmaker() as db:
                row = await db.get(Answer, answer_id)
        except SQLAlchemyError as exc:
            raise StorageError() from exc
        return AnswerOut.from_record(row) if row else None

    async def list_for_question(self, question_id: str) -> List[AnswerOut]:
        try:
            async with self._sessionmaker() as db:
                rows = (await db.scalars(select(Answer).where(Answer.question_id == question_id).order_by(Answer.created_at))).all()
        except SQLAlchemyError as exc:
            raise StorageError() from exc
        return [AnswerOut.from_record(r) for r in rows]

    async def _announce(self, operation_type: str, row: Answer) -> None:
        # Already committed: feed failures are logged, not raised.
        try:
            await self.feed.publish(ChangeEvent(operation_type, row.to_document()))
        except ChangeFeedError as exc:
            logger.error("Change feed publish failed for answer %s: %s", row.id, exc)
