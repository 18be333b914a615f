import pytest
from fastapi.testclient import TestClient

from liveanswers.core.auth import TokenData, create_token
from liveanswers.core.config import Settings
from liveanswers.core.database import Database
from liveanswers.main import create_app
from liveanswers.models.orm import Question, QuestionCollection, QuizSession
from liveanswers.services.answer_store import AnswerStore
from liveanswers.services.change_feed import InProcessChangeFeed


class FakeExchange:
    def __init__(self):
        self.published = []
        self.error = None

    async def publish(self, message, routing_key):
        if self.error is not None:
            raise self.error
        self.published.append((routing_key, message.body))


class FakeChannel:
    def __init__(self):
        self.declared = []
        self.default_exchange = FakeExchange()

    async def declare_queue(self, name, durable=True):
        self.declared.append((name, durable))


class FakeConnection:
    """Stands in for an aio-pika robust connection."""

    def __init__(self):
        self.channel_obj = FakeChannel()
        self.closed = 0
        self.urls = []

    async def connect(self, url):
        self.urls.append(url)
        return self

    async def channel(self):
        return self.channel_obj

    async def close(self):
        self.closed += 1


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        ENVIRONMENT="testing",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'liveanswers.db'}",
        SECRET_KEY="test-secret",
        RABBITMQ_QUEUE_NAME="answers",
        QUEUE_READY_TIMEOUT=1.0,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings.DATABASE_URL)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def feed():
    return InProcessChangeFeed()


@pytest.fixture
def store(database, feed):
    return AnswerStore(database.sessionmaker, feed)


@pytest.fixture
def amqp():
    return FakeConnection()


@pytest.fixture
def fatal_errors():
    return []


@pytest.fixture
def client(settings, amqp, fatal_errors):
    app = create_app(settings, connector=amqp.connect, on_fatal=fatal_errors.append)
    with TestClient(app) as c:
        yield c


def token_for(settings, user_id, anonymous=False, session_code=None, session_id=None):
    return create_token(settings, TokenData(userIdentifier=user_id, isAnonymous=anonymous,
                                            sessionCode=session_code, sessionId=session_id))


def auth_header(settings, user_id, **kw):
    return {"Authorization": f"Bearer {token_for(settings, user_id, **kw)}"}


async def seed_session(sessionmaker, code="ABC123", owner="owner-1", allow_anonymous=True, with_question=True):
    async with sessionmaker() as db:
        collection_ids = []
        question = None
        if with_question:
            question = Question(title="Old title", description="Old description")
            db.add(question)
            await db.flush()
            collection = QuestionCollection(questions_ids=[question.id])
            db.add(collection)
            await db.flush()
            collection_ids = [collection.id]
        row = QuizSession(session_code=code, owner_id=owner, allow_anonymous=allow_anonymous,
                          session_name="Quiz", session_description="Friday quiz",
                          question_collection_ids=collection_ids)
        db.add(row)
        await db.commit()
        return row.id, (question.id if question else None)
