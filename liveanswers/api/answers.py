from fastapi import APIRouter, Depends

from liveanswers.api.deps import get_answer_store, get_publisher
from liveanswers.core.auth import TokenData, get_current_user
from liveanswers.models.schemas import AnswerOut, AnswerWrite, FanoutEvent
from liveanswers.services.answer_store import AnswerStore
from liveanswers.services.fanout import FanoutPublisher

router = APIRouter()

ANSWER_PATH = "/session/{sid}/question-collection/{qcid}/question/{qid}/answer"


@router.post(ANSWER_PATH, status_code=201, response_model=AnswerOut)
async def create_answer(sid: str, qcid: str, qid: str, payload: AnswerWrite,
                        user: TokenData = Depends(get_current_user),
                        store: AnswerStore = Depends(get_answer_store),
                        publisher: FanoutPublisher = Depends(get_publisher)):
    answer = await store.create(user.userIdentifier, sid, qid, payload.content)
    # A publish failure surfaces as 500 even though the answer is already stored.
    await publisher.publish(FanoutEvent(content=answer.content, aid=answer.id, session_id=sid))
    return answer


@router.patch(ANSWER_PATH + "/{aid}")
async def update_answer(sid: str, qcid: str, qid: str, aid: str, payload: AnswerWrite,
                        user: TokenData = Depends(get_current_user),
                        store: AnswerStore = Depends(get_answer_store),
                        publisher: FanoutPublisher = Depends(get_publisher)):
    answer = await store.update(user.userIdentifier, aid, payload.content)
    await publisher.publish(FanoutEvent(content=answer.content, aid=aid, session_id=sid))
    return {"message": "updatedAnswer"}
