from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, StrictBool, StrictFloat, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

from liveanswers.models.orm import Answer, QuizSession


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnswerContent(BaseModel):
    type: str
    value: StrictBool | StrictInt | StrictFloat | StrictStr


class AnswerWrite(BaseModel):
    content: AnswerContent


class AnswerOut(CamelModel):
    id: str
    owner_id: str
    session_id: str
    question_id: str
    content: AnswerContent
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, row: Answer) -> "AnswerOut":
        return cls(id=row.id, owner_id=row.owner_id, session_id=row.session_id, question_id=row.question_id,
                   content=AnswerContent(**row.content), created_at=row.created_at, updated_at=row.updated_at)


class FanoutEvent(CamelModel):
    """Queue payload: {content, aid, sessionId}."""
    content: AnswerContent
    aid: str
    session_id: str

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class SessionOut(CamelModel):
    id: str
    session_code: str
    question_collection_ids: List[str]
    is_active: bool
    session_description: Optional[str] = None
    session_name: Optional[str] = None

    @classmethod
    def from_record(cls, row: QuizSession) -> "SessionOut":
        return cls(id=row.id, session_code=row.session_code, question_collection_ids=list(row.question_collection_ids or []),
                   is_active=bool(row.is_active), session_description=row.session_description, session_name=row.session_name)


class SessionOverrides(CamelModel):
    session_description: Optional[str] = None
    session_name: Optional[str] = None


class QuestionOverrides(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class StartSession(BaseModel):
    session: Optional[SessionOverrides] = None
    question: Optional[QuestionOverrides] = None
