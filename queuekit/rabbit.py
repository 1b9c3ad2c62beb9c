"""RabbitMQ adapter for the ``Queue`` contract.

This module wraps ``aio_pika`` to provide:
- Establishing robust connections with optional TLS/mTLS support
- Declaring a single named queue with durability/exclusivity flags
- Publishing composed messages through the default exchange
- Streaming deliveries (push model) and rejecting them by delivery tag

Lifecycle:
    connect -> channel -> [qos] -> declare queue -> ... -> close channel -> close connection

Example:
    >>> queue = await new_rabbitmq_queue(RabbitMQConfig(name="orders", durable=True))
    >>> await queue.send(queue.compose_message(b'{"id":1}'))
    >>> stream = await queue.receive()
    >>> async for delivery in stream:
    ...     await queue.delete(delivery.ack_token)
"""

import asyncio
import logging
import ssl
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlsplit

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)

from queuekit.base import Delivery, Queue
from queuekit.config import RabbitMQConfig, Settings
from queuekit.constants import (
    ADAPTER_RABBITMQ,
    MAX_DELIVERY_TAG,
    OP_CLOSE,
    OP_CONNECT,
    OP_DECLARE,
    OP_DELETE,
    OP_RECEIVE,
    OP_SEND,
)
from queuekit.errors import (
    CloseError,
    ConfigurationError,
    DeclarationError,
    ParseError,
    ProtocolError,
    QueueConnectionError,
    SerializationError,
    TypeMismatchError,
)
from queuekit.metrics import QUEUE_MESSAGES_RECEIVED_TOTAL, observe
from queuekit.tracing import inject_headers


logger = logging.getLogger(__name__)

_STREAM_END = object()


def _build_ssl_context(url: str, settings: Settings) -> Optional[ssl.SSLContext]:
    """Return an ``ssl.SSLContext`` for TLS/mTLS if configured, else ``None``.

    Honors ``RABBITMQ_SSL_*`` flags in ``Settings``. When verification is
    disabled (dev/local), hostname checks and certificate verification are
    relaxed.
    """
    scheme = urlsplit(url).scheme.lower()
    wants_tls = scheme == "amqps" or any(
        [
            bool(settings.rabbitmq_ssl_ca_path),
            bool(settings.rabbitmq_ssl_cert_path),
            bool(settings.rabbitmq_ssl_key_path),
        ]
    )
    if not wants_tls:
        return None

    cafile = settings.rabbitmq_ssl_ca_path or None
    context = ssl.create_default_context(cafile=cafile)

    # Client certs for mTLS if provided
    if settings.rabbitmq_ssl_cert_path and settings.rabbitmq_ssl_key_path:
        context.load_cert_chain(settings.rabbitmq_ssl_cert_path, settings.rabbitmq_ssl_key_path)

    if not settings.rabbitmq_ssl_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    else:
        context.check_hostname = bool(settings.rabbitmq_ssl_check_hostname)
        context.verify_mode = ssl.CERT_REQUIRED

    return context


async def connect(url: str, settings: Optional[Settings] = None) -> AbstractRobustConnection:
    """Open a robust AMQP connection, with TLS when the URL or settings ask for it.

    A single attempt is made; reconnect/backoff policy belongs to the caller.
    """
    settings = settings or Settings()
    ssl_context = _build_ssl_context(url, settings)
    if ssl_context is not None:
        return await aio_pika.connect_robust(url, ssl=True, ssl_context=ssl_context)
    return await aio_pika.connect_robust(url)


def parse_delivery_tag(ack_token: str) -> int:
    """Parse a decimal-encoded delivery tag.

    >>> parse_delivery_tag("42")
    42
    """
    if not isinstance(ack_token, str) or not (ack_token.isascii() and ack_token.isdigit()):
        raise ParseError(f"invalid delivery tag {ack_token!r}: expected a non-negative integer")
    delivery_tag = int(ack_token)
    if delivery_tag > MAX_DELIVERY_TAG:
        raise ParseError(f"invalid delivery tag {ack_token!r}: exceeds 64 bits")
    return delivery_tag


def _redact(url: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}"


@dataclass(frozen=True)
class RabbitMQEnvelope:
    """A composed AMQP message, ready for ``RabbitMQQueue.send``."""
    message: Message

    @property
    def body(self) -> bytes:
        return self.message.body


def _to_delivery(message: AbstractIncomingMessage) -> Delivery:
    attributes: dict[str, str] = {}
    if message.content_type:
        attributes["content_type"] = message.content_type
    if message.priority is not None:
        attributes["priority"] = str(message.priority)
    if message.timestamp is not None:
        attributes["timestamp"] = message.timestamp.isoformat()
    attributes["redelivered"] = str(bool(message.redelivered)).lower()
    for key, value in (message.headers or {}).items():
        attributes[str(key)] = value if isinstance(value, str) else str(value)
    return Delivery(
        body=message.body,
        ack_token=str(message.delivery_tag),
        message_id=message.message_id,
        attributes=attributes,
        raw=message,
    )


class DeliveryStream:
    """Continuous feed of deliveries from one AMQP consumer.

    Deliveries are pushed by the broker and buffered until the caller pulls
    them with ``async for``. At most ``max_buffered`` deliveries are held at a
    time (0 means no bound); the consumer callback waits for room beyond that.

    The stream ends after ``cancel()``, when the owning queue is closed, or
    when the channel closes underneath it. Deliveries already buffered are
    still yielded before the end.
    """

    def __init__(self, queue: AbstractQueue, max_buffered: int = 0) -> None:
        self._queue = queue
        self._buffer: asyncio.Queue = asyncio.Queue()
        self._max_buffered = max_buffered
        self._room = asyncio.Event()
        self._consumer_tag: Optional[str] = None
        self._cancelled = False
        self._ended = False

    @property
    def consumer_tag(self) -> Optional[str]:
        return self._consumer_tag

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def buffered(self) -> int:
        """Deliveries received from the broker but not yet yielded."""
        return self._buffer.qsize() - (1 if self._ended else 0)

    async def _start(self, *, no_ack: bool, exclusive: bool, arguments: dict[str, Any], consumer_tag: Optional[str]) -> None:
        self._consumer_tag = await self._queue.consume(
            self._on_message,
            no_ack=no_ack,
            exclusive=exclusive,
            arguments=arguments or None,
            consumer_tag=consumer_tag,
        )

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        while self._max_buffered and not self._ended and self._buffer.qsize() >= self._max_buffered:
            self._room.clear()
            await self._room.wait()
        if self._ended:
            return
        self._buffer.put_nowait(message)

    def _end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._buffer.put_nowait(_STREAM_END)
        self._room.set()

    async def cancel(self) -> None:
        """Stop the consumer; buffered deliveries are still yielded."""
        if self._cancelled or self._ended:
            self._cancelled = True
            return
        self._cancelled = True
        try:
            if self._consumer_tag is not None:
                await self._queue.cancel(self._consumer_tag)
        except Exception as exc:  # noqa: BLE001
            raise ProtocolError(f"cancel consumer {self._consumer_tag!r} failed: {exc}") from exc
        finally:
            self._end()

    def __aiter__(self) -> "DeliveryStream":
        return self

    async def __anext__(self) -> Delivery:
        item = await self._buffer.get()
        if item is _STREAM_END:
            # keep the marker so later iterations end too
            self._buffer.put_nowait(_STREAM_END)
            raise StopAsyncIteration
        self._room.set()
        QUEUE_MESSAGES_RECEIVED_TOTAL.labels(adapter=ADAPTER_RABBITMQ).inc()
        return _to_delivery(item)

    async def __aenter__(self) -> "DeliveryStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cancel()


class RabbitMQQueue(Queue):
    """``Queue`` bound to one connection, one channel and one declared queue.

    ``delete`` rejects without requeueing: it discards the message rather than
    acknowledging successful processing. Use ``auto_ack=True`` in the config
    when deliveries should be acknowledged by the broker on delivery.
    """

    adapter = ADAPTER_RABBITMQ

    def __init__(
        self,
        config: RabbitMQConfig,
        connection: AbstractRobustConnection,
        channel: AbstractChannel,
        queue: AbstractQueue,
    ) -> None:
        super().__init__()
        self._config = config
        self._connection = connection
        self._channel = channel
        self._queue = queue
        self._streams: "weakref.WeakSet[DeliveryStream]" = weakref.WeakSet()
        channel.close_callbacks.add(self._on_channel_closed)

    @property
    def queue_id(self) -> str:
        return self._queue.name

    @property
    def config(self) -> RabbitMQConfig:
        return self._config

    def compose_message(self, body: bytes) -> RabbitMQEnvelope:
        """Wrap ``body`` with content type, priority and a creation timestamp."""
        self._ensure_open()
        if not isinstance(body, (bytes, bytearray, memoryview)):
            raise SerializationError(f"message body must be bytes, got {type(body).__name__}")
        message = Message(
            body=bytes(body),
            content_type=self._config.content_type,
            priority=self._config.priority,
            timestamp=datetime.now(timezone.utc),
            message_id=uuid.uuid4().hex,
            delivery_mode=DeliveryMode.PERSISTENT if self._config.persistent else DeliveryMode.NOT_PERSISTENT,
            headers=inject_headers(),
        )
        logger.debug("rabbitmq envelope %s composed (%d bytes)", message.message_id, len(message.body))
        return RabbitMQEnvelope(message=message)

    async def send(self, envelope: RabbitMQEnvelope, *, timeout: Optional[float] = None) -> None:
        """Publish to the declared queue via the default exchange.

        Success means the broker accepted the publish, not that a consumer
        received it. Unroutable ``mandatory`` publishes surface as ``ProtocolError``.
        """
        self._ensure_open()
        if not isinstance(envelope, RabbitMQEnvelope):
            raise TypeMismatchError(
                f"rabbitmq queue cannot send {type(envelope).__name__}; use RabbitMQQueue.compose_message"
            )
        with observe(self.adapter, OP_SEND):
            try:
                await asyncio.wait_for(
                    self._channel.default_exchange.publish(
                        envelope.message,
                        routing_key=self._queue.name,
                        mandatory=self._config.mandatory,
                        immediate=self._config.immediate,
                    ),
                    timeout,
                )
            except Exception as exc:  # noqa: BLE001
                raise ProtocolError(f"publish to {self._queue.name!r} failed: {exc}") from exc

    async def receive(self, *, timeout: Optional[float] = None) -> DeliveryStream:
        """Start a consumer and return its delivery stream.

        The caller drains the stream for as long as it wants deliveries and
        calls ``stream.cancel()`` to stop. The stream also ends when this queue is
        closed or the channel goes away.
        """
        self._ensure_open()
        if self._config.no_local:
            logger.debug("rabbitmq consume no_local=True is not supported by aio-pika and is ignored")
        stream = DeliveryStream(self._queue, max_buffered=self._config.prefetch_count)
        with observe(self.adapter, OP_RECEIVE):
            try:
                await asyncio.wait_for(
                    stream._start(
                        no_ack=self._config.auto_ack,
                        exclusive=self._config.exclusive,
                        arguments=dict(self._config.consume_arguments),
                        consumer_tag=self._config.consumer_tag,
                    ),
                    timeout,
                )
            except Exception as exc:  # noqa: BLE001
                raise ProtocolError(f"consume from {self._queue.name!r} failed: {exc}") from exc
        self._streams.add(stream)
        logger.debug("rabbitmq consumer %s started on %s", stream.consumer_tag, self._queue.name)
        return stream

    async def delete(self, ack_token: str, *, timeout: Optional[float] = None) -> None:
        """Reject the delivery identified by ``ack_token`` with ``requeue=False``."""
        self._ensure_open()
        delivery_tag = parse_delivery_tag(ack_token)
        with observe(self.adapter, OP_DELETE):
            try:
                underlay = await self._channel.get_underlay_channel()
                await asyncio.wait_for(underlay.basic_reject(delivery_tag, requeue=False), timeout)
            except Exception as exc:  # noqa: BLE001
                raise ProtocolError(f"reject delivery {delivery_tag} failed: {exc}") from exc

    def _on_channel_closed(self, *_args: Any) -> None:
        self._end_streams()

    def _end_streams(self) -> None:
        for stream in list(self._streams):
            stream._end()

    async def _close(self) -> None:
        self._end_streams()
        errors: list[BaseException] = []
        with observe(self.adapter, OP_CLOSE):
            for resource, closer in (("channel", self._channel.close), ("connection", self._connection.close)):
                try:
                    await closer()
                except Exception as exc:  # noqa: BLE001
                    if errors:
                        logger.warning("rabbitmq %s close also failed: %s", resource, exc)
                    errors.append(exc)
            if errors:
                raise CloseError(errors[0], errors[1] if len(errors) > 1 else None) from errors[0]
        logger.info("rabbitmq queue %s closed", self._queue.name)


async def new_rabbitmq_queue(
    config: Optional[RabbitMQConfig],
    *,
    settings: Optional[Settings] = None,
    timeout: Optional[float] = None,
) -> RabbitMQQueue:
    """Connect, open a channel and declare the configured queue.

    Declaration is idempotent: an existing queue with matching attributes is
    reused; mismatched attributes surface as ``DeclarationError`` carrying the
    broker's error.
    """
    if config is None:
        raise ConfigurationError("rabbitmq config must be provided")
    if not config.name.strip():
        raise ConfigurationError("queue name must be present")
    if not config.url:
        raise ConfigurationError("rabbitmq url must be present")

    with observe(ADAPTER_RABBITMQ, OP_CONNECT):
        try:
            connection = await asyncio.wait_for(connect(config.url, settings), timeout)
        except Exception as exc:  # noqa: BLE001
            raise QueueConnectionError(f"connect to {_redact(config.url)} failed: {exc}") from exc
    logger.info("rabbitmq connected to %s", _redact(config.url))

    try:
        with observe(ADAPTER_RABBITMQ, OP_CONNECT):
            try:
                channel = await asyncio.wait_for(connection.channel(), timeout)
            except Exception as exc:  # noqa: BLE001
                raise QueueConnectionError(f"open channel failed: {exc}") from exc

        with observe(ADAPTER_RABBITMQ, OP_DECLARE):
            try:
                if config.prefetch_count > 0:
                    await asyncio.wait_for(channel.set_qos(prefetch_count=config.prefetch_count), timeout)
                if config.no_wait:
                    logger.debug("rabbitmq declare no_wait=True is not supported by aio-pika; waiting for DeclareOk")
                queue = await asyncio.wait_for(
                    channel.declare_queue(
                        config.name,
                        durable=config.durable,
                        exclusive=config.exclusive,
                        auto_delete=config.auto_delete,
                        arguments=dict(config.arguments) or None,
                    ),
                    timeout,
                )
            except Exception as exc:  # noqa: BLE001
                raise DeclarationError(f"cannot initialise queue {config.name!r}: {exc}") from exc
    except BaseException:
        try:
            await connection.close()
        except Exception as close_exc:  # noqa: BLE001
            logger.warning("rabbitmq connection cleanup after failed setup also failed: %s", close_exc)
        raise

    logger.info("rabbitmq queue %s declared (durable=%s)", queue.name, config.durable)
    return RabbitMQQueue(config, connection, channel, queue)
