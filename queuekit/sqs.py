"""Amazon SQS adapter for the ``Queue`` contract.

SQS is a stateless request/response API: every operation opens a client
from the session for the duration of the call, and ``close`` has nothing to
release.

Key differences from the RabbitMQ adapter:
- ``receive`` is a single blocking pull returning zero or more messages;
  callers loop on empty batches for continuous consumption.
- ``delete`` removes the message by its opaque receipt handle, which is only
  valid within the visibility timeout of the receive that returned it.

Example:
    >>> session = await create_aws_session()
    >>> queue = await new_sqs_queue(session, SQSConfig(queue=CreateQueueConfig(name="orders")))
    >>> await queue.send(queue.compose_message(b'{"id":1}'))
    >>> batch = await queue.receive()
    >>> for delivery in batch:
    ...     await queue.delete(delivery.ack_token)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from queuekit.base import Delivery, Queue
from queuekit.config import SQSConfig
from queuekit.constants import (
    ADAPTER_SQS,
    OP_CLOSE,
    OP_DECLARE,
    OP_DELETE,
    OP_RECEIVE,
    OP_SEND,
)
from queuekit.errors import (
    ConfigurationError,
    DeclarationError,
    ProtocolError,
    QueueConnectionError,
    SerializationError,
    TypeMismatchError,
)
from queuekit.metrics import QUEUE_MESSAGES_RECEIVED_TOTAL, observe


logger = logging.getLogger(__name__)


class ClientFactory(Protocol):
    """Anything that hands out SQS clients, e.g. ``queuekit.session.AwsSession``."""

    def client(self, service: str = "sqs") -> Any: ...


def _error_code(exc: ClientError) -> Optional[str]:
    return exc.response.get("Error", {}).get("Code")


@dataclass(frozen=True)
class SQSEnvelope:
    """A composed ``SendMessage`` payload; the queue URL is added at send time."""
    message_body: str
    delay_seconds: int = 0
    message_attributes: dict[str, dict[str, str]] = field(default_factory=dict)

    def to_request(self, queue_url: str) -> dict[str, Any]:
        request: dict[str, Any] = {
            "QueueUrl": queue_url,
            "MessageBody": self.message_body,
            "DelaySeconds": self.delay_seconds,
        }
        if self.message_attributes:
            request["MessageAttributes"] = {k: dict(v) for k, v in self.message_attributes.items()}
        return request


def _to_delivery(message: dict[str, Any]) -> Delivery:
    attributes: dict[str, str] = {str(k): str(v) for k, v in (message.get("Attributes") or {}).items()}
    for name, value in (message.get("MessageAttributes") or {}).items():
        if "StringValue" in value:
            attributes[name] = value["StringValue"]
    return Delivery(
        body=message.get("Body", "").encode("utf-8"),
        ack_token=message.get("ReceiptHandle", ""),
        message_id=message.get("MessageId"),
        attributes=attributes,
        raw=message,
    )


@dataclass(frozen=True)
class ReceiveBatch:
    """Result of one ``ReceiveMessage`` call: zero or more deliveries."""
    deliveries: tuple[Delivery, ...]
    response: dict[str, Any] = field(default_factory=dict, repr=False)

    def __iter__(self) -> Iterator[Delivery]:
        return iter(self.deliveries)

    def __len__(self) -> int:
        return len(self.deliveries)


class SQSQueue(Queue):
    """``Queue`` bound to one resolved SQS queue URL.

    SQS message bodies are text, so only valid UTF-8 payloads round-trip:
    ``compose_message`` raises ``SerializationError`` for any other bytes.
    Encode binary payloads (base64, for example) before composing them.
    Received bodies come back as the UTF-8 encoding of the stored text.
    """

    adapter = ADAPTER_SQS

    def __init__(self, session: ClientFactory, config: SQSConfig, queue_url: str) -> None:
        super().__init__()
        self._session = session
        self._config = config
        self._queue_url = queue_url

    @property
    def queue_id(self) -> str:
        return self._queue_url

    @property
    def queue_url(self) -> str:
        return self._queue_url

    @property
    def config(self) -> SQSConfig:
        return self._config

    async def _call(self, operation: str, method: str, timeout: Optional[float], **params: Any) -> dict[str, Any]:
        with observe(self.adapter, operation):
            try:
                async with self._session.client("sqs") as client:
                    return await asyncio.wait_for(getattr(client, method)(**params), timeout)
            except ClientError as exc:
                code = _error_code(exc)
                raise ProtocolError(f"sqs {method} failed ({code}): {exc}", code=code) from exc
            except BotoCoreError as exc:
                raise QueueConnectionError(f"sqs {method} failed: {exc}") from exc
            except Exception as exc:  # noqa: BLE001
                raise ProtocolError(f"sqs {method} failed: {exc}") from exc

    def compose_message(self, body: bytes) -> SQSEnvelope:
        """Build a ``SendMessage`` payload; SQS bodies must be valid UTF-8 text."""
        self._ensure_open()
        if not isinstance(body, (bytes, bytearray, memoryview)):
            raise SerializationError(f"message body must be bytes, got {type(body).__name__}")
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SerializationError(f"sqs message body must be valid UTF-8: {exc}") from exc
        logger.debug("sqs envelope composed (%d bytes, delay=%ss)", len(text), self._config.delay_seconds)
        return SQSEnvelope(message_body=text, delay_seconds=self._config.delay_seconds)

    async def send(self, envelope: SQSEnvelope, *, timeout: Optional[float] = None) -> Optional[str]:
        """Send the envelope to the resolved queue URL; returns the SQS message id."""
        self._ensure_open()
        if not isinstance(envelope, SQSEnvelope):
            raise TypeMismatchError(
                f"sqs queue cannot send {type(envelope).__name__}; use SQSQueue.compose_message"
            )
        response = await self._call(OP_SEND, "send_message", timeout, **envelope.to_request(self._queue_url))
        return response.get("MessageId")

    async def receive(self, *, timeout: Optional[float] = None) -> ReceiveBatch:
        """Pull one batch; an empty batch means nothing arrived within the wait time."""
        self._ensure_open()
        cfg = self._config.receive
        params: dict[str, Any] = {
            "QueueUrl": self._queue_url,
            "MaxNumberOfMessages": cfg.max_messages,
            "WaitTimeSeconds": cfg.wait_time_seconds,
        }
        if cfg.visibility_timeout is not None:
            params["VisibilityTimeout"] = cfg.visibility_timeout
        if cfg.attribute_names:
            params["AttributeNames"] = list(cfg.attribute_names)
        if cfg.message_attribute_names:
            params["MessageAttributeNames"] = list(cfg.message_attribute_names)
        response = await self._call(OP_RECEIVE, "receive_message", timeout, **params)
        deliveries = tuple(_to_delivery(m) for m in response.get("Messages") or [])
        if deliveries:
            QUEUE_MESSAGES_RECEIVED_TOTAL.labels(adapter=self.adapter).inc(len(deliveries))
        return ReceiveBatch(deliveries=deliveries, response=response)

    async def delete(self, ack_token: str, *, timeout: Optional[float] = None) -> None:
        """Delete the message identified by its receipt handle."""
        self._ensure_open()
        if not ack_token:
            raise ConfigurationError("receipt handle is required")
        await self._call(OP_DELETE, "delete_message", timeout, QueueUrl=self._queue_url, ReceiptHandle=ack_token)

    async def _close(self) -> None:
        with observe(self.adapter, OP_CLOSE):
            logger.debug("sqs queue %s closed", self._queue_url)


async def new_sqs_queue(
    session: Optional[ClientFactory],
    config: Optional[SQSConfig],
    *,
    timeout: Optional[float] = None,
) -> SQSQueue:
    """Create (or resolve) the configured queue and return a handle bound to its URL.

    ``CreateQueue`` is idempotent: an existing queue with the same name and
    attributes returns its URL.
    """
    if config is None:
        raise ConfigurationError("sqs config must be provided")
    if not config.queue.name.strip():
        raise ConfigurationError("queue name is required")
    if session is None:
        raise ConfigurationError("aws session must be provided")

    params: dict[str, Any] = {"QueueName": config.queue.name}
    if config.queue.attributes:
        params["Attributes"] = dict(config.queue.attributes)
    if config.queue.tags:
        params["tags"] = dict(config.queue.tags)

    with observe(ADAPTER_SQS, OP_DECLARE):
        try:
            async with session.client("sqs") as client:
                response = await asyncio.wait_for(client.create_queue(**params), timeout)
        except ClientError as exc:
            raise DeclarationError(f"create queue {config.queue.name!r} failed ({_error_code(exc)}): {exc}") from exc
        except BotoCoreError as exc:
            raise QueueConnectionError(f"sqs client for {config.queue.name!r} failed: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            raise DeclarationError(f"create queue {config.queue.name!r} failed: {exc}") from exc

        queue_url = response.get("QueueUrl") if response else None
        if not queue_url:
            raise DeclarationError("failed to create the queue. Queue URL is empty")

    logger.info("sqs queue %s resolved to %s", config.queue.name, queue_url)
    return SQSQueue(session, config, queue_url)
