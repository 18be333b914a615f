from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from liveanswers.core.database import Base


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuizSession(Base):
    __tablename__ = "sessions"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    session_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    allow_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    question_collection_ids: Mapped[List[str]] = mapped_column(JSON, default=list)


class QuestionCollection(Base):
    __tablename__ = "question_collections"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    questions_ids: Mapped[List[str]] = mapped_column(JSON, default=list)


class Question(Base):
    __tablename__ = "questions"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        Index("idx_answer_question", "question_id"),
        Index("idx_answer_owner", "owner_id", "id"),
    )
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_document(self) -> Dict[str, Any]:
        """Full record as carried on the change feed."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "sessionId": self.session_id,
            "questionId": self.question_id,
            "content": self.content,
        }
