"""
Queue transport: one long-lived AMQP connection and channel per process.

The connection is opened in the background after startup, so a request can
arrive before the channel exists. Such calls wait for readiness for at most
``ready_timeout`` seconds and then fail with TransportNotReadyError. A failed
initial connect is fatal: the state becomes FAILED and ``on_fatal`` runs.
Errors on individual declare/send calls after that are raised per call.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

import aio_pika
from aio_pika.exceptions import AMQPError

from liveanswers.core.errors import TransportError, TransportNotReadyError

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[aio_pika.abc.AbstractConnection]]


class TransportState(str, enum.Enum):
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class QueueTransport:

    def __init__(self, url: str, *, ready_timeout: float = 5.0, connector: Optional[Connector] = None,
                 on_fatal: Optional[Callable[[BaseException], None]] = None):
        self._url = url
        self._ready_timeout = ready_timeout
        self._connector = connector or aio_pika.connect_robust
        self._on_fatal = on_fatal
        self._state = TransportState.CONNECTING
        self._ready = asyncio.Event()
        self._lock = asyncio.Lock()
        self._connection = None
        self._channel = None
        self._error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> TransportState:
        return self._state

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self._connect())
        return self._task

    async def _connect(self) -> None:
        logger.info("Connecting to RabbitMQ at %s", self._safe_url())
        try:
            self._connection = await self._connector(self._url)
            self._channel = await self._connection.channel()
        except Exception as exc:
            if self._state is TransportState.CLOSED:
                logger.info("RabbitMQ connect abandoned during shutdown: %s", exc)
                return
            self._state = TransportState.FAILED
            self._error = exc
            self._ready.set()
            logger.critical("RabbitMQ setup failed: %s", exc)
            if self._on_fatal is not None:
                self._on_fatal(exc)
            return
        if self._state is TransportState.CLOSED:
            await self._connection.close()
            return
        self._state = TransportState.READY
        self._ready.set()
        logger.info("RabbitMQ channel ready")

    async def _acquire_channel(self):
        if self._state is TransportState.CONNECTING:
            try:
                await asyncio.wait_for(self._ready.wait(), self._ready_timeout)
            except asyncio.TimeoutError:
                raise TransportNotReadyError(f"queue channel not ready after {self._ready_timeout}s")
        if self._state is TransportState.FAILED:
            raise TransportError(f"queue transport failed: {self._error}")
        if self._state is TransportState.CLOSED:
            raise TransportError("queue transport closed")
        return self._channel

    async def ensure_queue(self, name: str) -> None:
        """Declare ``name`` as a non-durable queue. Idempotent."""
        channel = await self._acquire_channel()
        async with self._lock:
            try:
                await channel.declare_queue(name, durable=False)
            except (AMQPError, ConnectionError, asyncio.TimeoutError) as exc:
                raise TransportError(f"could not declare queue {name}: {exc}") from exc

    async def send(self, name: str, body: bytes) -> None:
        channel = await self._acquire_channel()
        async with self._lock:
            try:
                await channel.default_exchange.publish(aio_pika.Message(body=body), routing_key=name)
            except (AMQPError, ConnectionError, asyncio.TimeoutError) as exc:
                raise TransportError(f"could not publish to {name}: {exc}") from exc

    async def close(self) -> None:
        if self._state is TransportState.CLOSED:
            return
        self._state = TransportState.CLOSED
        self._ready.set()
        if self._connection is not None:
            await self._connection.close()
        logger.info("RabbitMQ connection closed")

    def _safe_url(self) -> str:
        if "@" not in self._url:
            return self._url
        scheme, rest = self._url.split("://", 1)
        return f"{scheme}://***@{rest.split('@', 1)[1]}"
