from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from liveanswers.api.deps import get_app_settings
from liveanswers.core.auth import TokenData, create_token
from liveanswers.core.config import Settings

router = APIRouter()


class MockLogin(BaseModel):
    userIdentifier: str


@router.post("/mock-login")
def mock_login(payload: MockLogin, settings: Settings = Depends(get_app_settings)):
    if not settings.ENABLE_MOCK_LOGIN or settings.is_production():
        raise HTTPException(404, "Not Found")
    token = create_token(settings, TokenData(userIdentifier=payload.userIdentifier, isAnonymous=False))
    return {"access_token": token, "token_type": "bearer"}
