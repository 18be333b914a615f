from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from liveanswers.api.deps import get_app_settings, get_change_feed, get_session_service
from liveanswers.core.auth import TokenData, bearer_token, get_current_user
from liveanswers.core.config import Settings
from liveanswers.models.schemas import SessionOut, StartSession
from liveanswers.services.change_feed import ChangeFeed
from liveanswers.services.session_join import SessionJoinService
from liveanswers.streaming.answer_events import SSE_HEADERS, AnswerEventStream

router = APIRouter()


@router.get("/session/{session_id}", response_model=SessionOut)
async def get_session(session_id: str, user: TokenData = Depends(get_current_user),
                      sessions: SessionJoinService = Depends(get_session_service)):
    return await sessions.get_session(session_id)


@router.get("/session/{session_id}/question/{question_id}/answers/events")
async def answer_events(session_id: str, question_id: str,
                        feed: ChangeFeed = Depends(get_change_feed),
                        settings: Settings = Depends(get_app_settings)):
    stream = AnswerEventStream(feed, session_id, question_id, idle_timeout=settings.STREAM_IDLE_TIMEOUT)
    return StreamingResponse(stream.frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/session/{session_code}")
async def join_session(session_code: str, request: Request,
                       sessions: SessionJoinService = Depends(get_session_service)):
    result = await sessions.join_by_code(session_code, bearer_token(request))
    body = {"session": result.session.model_dump(by_alias=True)}
    if result.token:
        body["anonJwt"] = result.token
    return body


@router.post("/session/{session_id}/start", response_model=SessionOut)
async def start_session(session_id: str, payload: Optional[StartSession] = None,
                        user: TokenData = Depends(get_current_user),
                        sessions: SessionJoinService = Depends(get_session_service)):
    return await sessions.start_session(session_id, user.userIdentifier, payload or StartSession())
