from fastapi import Request

from liveanswers.core.config import Settings
from liveanswers.services.answer_store import AnswerStore
from liveanswers.services.change_feed import ChangeFeed
from liveanswers.services.fanout import FanoutPublisher
from liveanswers.services.session_join import SessionJoinService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_answer_store(request: Request) -> AnswerStore:
    return request.app.state.answer_store


def get_publisher(request: Request) -> FanoutPublisher:
    return request.app.state.publisher


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_session_service(request: Request) -> SessionJoinService:
    return request.app.state.session_service
