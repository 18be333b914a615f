"""Live answer stream for one question, framed as Server-Sent Events."""
import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Optional

from liveanswers.core.errors import ChangeFeedError
from liveanswers.services.change_feed import INSERT, UPDATE, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_event(data: Any) -> str:
    return f"data: {json.dumps(data)}\n\n"


class AnswerEventStream:
    """One subscriber connection: confirmation first, then ``{content}`` per answer write.

    The stream ends when the client goes away (the response task is cancelled),
    when the feed fails, or after ``idle_timeout`` seconds without an event.
    The subscription is closed exactly once on every path.
    """

    def __init__(self, feed: ChangeFeed, session_id: str, question_id: str, idle_timeout: Optional[float] = None):
        self.feed = feed
        self.session_id = session_id
        self.question_id = question_id
        self.idle_timeout = idle_timeout
        self.subscription: Optional[Subscription] = None

    @property
    def path(self) -> str:
        return f"/session/{self.session_id}/question/{self.question_id}/answers/events"

    async def frames(self) -> AsyncGenerator[str, None]:
        try:
            self.subscription = await self.feed.subscribe(self.question_id)
        except ChangeFeedError as exc:
            logger.error("Error setting up change stream for %s: %s", self.path, exc)
            return
        try:
            yield format_event({"message": f"Connected to {self.path} over SSE"})
            while True:
                try:
                    event = await self.subscription.get(timeout=self.idle_timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    logger.info("Closing idle answer stream %s", self.path)
                    break
                except ChangeFeedError as exc:
                    logger.error("Change stream error on %s: %s", self.path, exc)
                    break
                if event.operation_type in (INSERT, UPDATE):
                    yield format_event({"content": event.full_document.get("content")})
        finally:
            self.subscription.close()
            logger.info("Connection closed: %s", self.path)
