"""
Session join orchestration: join by code, anonymous vs. token policy, session start.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liveanswers.core.auth import create_anonymous_token, decode_token
from liveanswers.core.config import Settings
from liveanswers.core.errors import NotFoundError, PolicyError, StorageError
from liveanswers.models.orm import Question, QuestionCollection, QuizSession
from liveanswers.models.schemas import SessionOut, StartSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Default Name"
DEFAULT_SESSION_DESCRIPTION = "Default Description"
DEFAULT_QUESTION_TITLE = "Default Title"
DEFAULT_QUESTION_DESCRIPTION = "Default Description"


def _value_or(value: Optional[str], default: str) -> str:
    return default if value is None else value


@dataclass
class JoinResult:
    session: SessionOut
    token: Optional[str] = None


class SessionJoinService:

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings):
        self._sessionmaker = sessionmaker
        self._settings = settings

    async def get_session(self, session_id: str) -> SessionOut:
        try:
            async with self._sessionmaker() as db:
                row = await db.get(QuizSession, session_id)
        except SQLAlchemyError as exc:
            raise StorageError() from exc
        if row is None:
            raise NotFoundError("Session not found")
        return SessionOut.from_record(row)

    async def join_by_code(self, session_code: str, token: Optional[str] = None) -> JoinResult:
        try:
            async with self._sessionmaker() as db:
                row = await db.scalar(select(QuizSession).where(QuizSession.session_code == session_code))
        except SQLAlchemyError as exc:
            raise StorageError() from exc
        if row is None:
            raise NotFoundError("Session not found")
        session = SessionOut.from_record(row)

        if not token:
            if not row.allow_anonymous:
                logger.info("Anonymous user trying to join session %s which does not allow anonymous users", session_code)
                raise PolicyError()
            return JoinResult(session, self._mint(row))

        payload = decode_token(self._settings, token)
        if payload.isAnonymous and not row.allow_anonymous:
            logger.info("Anonymous user trying to join session %s which does not allow anonymous users", session_code)
            raise PolicyError()
        if payload.sessionCode != row.session_code:
            # A token from another session is treated as a fresh anonymous join;
            # the caller's previous identity is dropped.
            logger.info("Token for session %s used to join %s; issuing anonymous token", payload.sessionCode, session_code)
            return JoinResult(session, self._mint(row))
        return JoinResult(session)

    async def start_session(self, session_id: str, owner_id: str, overrides: StartSession) -> SessionOut:
        session_in = overrides.session
        question_in = overrides.question
        session_name = _value_or(session_in and session_in.session_name, DEFAULT_SESSION_NAME)
        session_description = _value_or(session_in and session_in.session_description, DEFAULT_SESSION_DESCRIPTION)
        question_title = _value_or(question_in and question_in.title, DEFAULT_QUESTION_TITLE)
        question_description = _value_or(question_in and question_in.description, DEFAULT_QUESTION_DESCRIPTION)

        try:
            async with self._sessionmaker() as db:
                row = await db.scalar(select(QuizSession).where(QuizSession.id == session_id, QuizSession.owner_id == owner_id))
                if row is None:
                    raise NotFoundError("Session not found")
                row.is_active = True
                row.session_name = session_name
                row.session_description = session_description

                question = await self._first_question(db, row)
                if question is not None:
                    question.title = question_title
                    question.description = question_description
                    logger.info("Seeded question %s for session %s", question.id, session_id)

                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as exc:
            logger.error("Error starting session %s: %s", session_id, exc)
            raise StorageError() from exc
        logger.info("Started session %s", session_id)
        return SessionOut.from_record(row)

    async def _first_question(self, db: AsyncSession, row: QuizSession) -> Optional[Question]:
        if not row.question_collection_ids:
            return None
        collection = await db.get(QuestionCollection, row.question_collection_ids[0])
        if collection is None or not collection.questions_ids:
            return None
        return await db.get(Question, collection.questions_ids[0])

    def _mint(self, row: QuizSession) -> str:
        return create_anonymous_token(self._settings, row.session_code, row.id)
