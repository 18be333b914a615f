import logging

from liveanswers.models.schemas import FanoutEvent
from liveanswers.services.queue_transport import QueueTransport

logger = logging.getLogger(__name__)


class FanoutPublisher:
    """Sends answer events to the single fanout queue.

    Awaited inside the request after the answer is stored. Not retried; a
    TransportError propagates to the caller and the stored answer stays.
    """

    def __init__(self, transport: QueueTransport, queue_name: str):
        self.transport = transport
        self.queue_name = queue_name

    async def publish(self, event: FanoutEvent) -> None:
        body = event.to_bytes()
        # The queue may be gone after a broker restart; declare before every send.
        await self.transport.ensure_queue(self.queue_name)
        await self.transport.send(self.queue_name, body)
        logger.info("Sent to queue %s: %s", self.queue_name, body.decode("utf-8"))
