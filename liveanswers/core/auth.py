from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from liveanswers.core.config import Settings
from liveanswers.core.errors import AuthError


class TokenData(BaseModel):
    userIdentifier: str
    isAnonymous: bool = False
    sessionCode: Optional[str] = None
    sessionId: Optional[str] = None


bearer = HTTPBearer()


def create_token(settings: Settings, data: TokenData) -> str:
    now = datetime.now(timezone.utc)
    payload = data.model_dump()
    payload.update({"iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=settings.TOKEN_TTL_MINUTES)).timestamp())})
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)


def create_anonymous_token(settings: Settings, session_code: str, session_id: str) -> str:
    return create_token(settings, TokenData(userIdentifier=str(uuid4()), isAnonymous=True, sessionCode=session_code, sessionId=session_id))


def decode_token(settings: Settings, token: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
        return TokenData(**payload)
    except (jwt.InvalidTokenError, ValueError):
        raise AuthError()


def bearer_token(request: Request) -> Optional[str]:
    """Raw bearer token from the Authorization header, if any."""
    header = request.headers.get("authorization") or ""
    token = header.replace("Bearer ", "", 1).strip()
    return token or None


def get_current_user(request: Request, creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    return decode_token(request.app.state.settings, creds.credentials)
