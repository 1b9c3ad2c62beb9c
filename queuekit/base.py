"""Protocol-agnostic queue contract implemented by every adapter.

A ``Queue`` is created by an adapter factory (``new_rabbitmq_queue`` or
``new_sqs_queue``), owns exactly one broker session and one resolved queue
identity, and lives until ``close()``.

Message flow:
    >>> envelope = queue.compose_message(b'{"id": 1}')   # pure, no I/O
    >>> await queue.send(envelope)
    >>> result = await queue.receive()                  # adapter-specific shape
    >>> for delivery in result: ...                       # or ``async for`` (AMQP)
    ...     await queue.delete(delivery.ack_token)
    >>> await queue.close()

Envelopes and receive results are owned by the adapter that produced them.
Passing an envelope from one adapter into another adapter's ``send`` raises
``TypeMismatchError``.

``close()`` is idempotent for every adapter: the first call releases broker
resources and later calls return ``None``. Any other operation on a closed
handle raises ``QueueClosedError``.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Optional

from queuekit.errors import QueueClosedError


@dataclass(frozen=True)
class Delivery:
    """A message retrieved from a queue.

    Attributes
    ----------
    body: bytes
        The raw payload, exactly as it was composed.
    ack_token: str
        The value to pass to ``Queue.delete``: a decimal delivery tag for
        RabbitMQ, the receipt handle for SQS.
    message_id: str | None
        Broker-assigned (SQS) or publisher-set (AMQP) identifier, when present.
    attributes: dict[str, str]
        Broker metadata flattened to strings.
    raw: Any
        The adapter-native message object, for callers that need it.
    """
    body: bytes
    ack_token: str
    message_id: Optional[str] = None
    attributes: dict[str, str] = field(default_factory=dict)
    raw: Any = field(default=None, repr=False, compare=False)


class Queue(abc.ABC):
    """Producer/consumer contract shared by the RabbitMQ and SQS adapters.

    Handles are not safe for concurrent ``send``/``receive`` from multiple
    tasks; serialize access or create one handle per concurrent user.
    """

    adapter: str = ""

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    @abc.abstractmethod
    def queue_id(self) -> str:
        """Resolved queue identity (queue name for AMQP, queue URL for SQS)."""

    @abc.abstractmethod
    def compose_message(self, body: bytes) -> Any:
        """Build this adapter's native envelope from a raw byte body."""

    @abc.abstractmethod
    async def send(self, envelope: Any, *, timeout: Optional[float] = None) -> Any:
        """Publish an envelope produced by this adapter's ``compose_message``."""

    @abc.abstractmethod
    async def receive(self, *, timeout: Optional[float] = None) -> Any:
        """Retrieve messages; the result shape is adapter-specific."""

    @abc.abstractmethod
    async def delete(self, ack_token: str, *, timeout: Optional[float] = None) -> None:
        """Remove/acknowledge the message identified by ``ack_token``."""

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close()

    @abc.abstractmethod
    async def _close(self) -> None:
        """Release broker resources; called at most once."""

    def _ensure_open(self) -> None:
        if self._closed:
            raise QueueClosedError(f"{self.adapter} queue {self.queue_id!r} is closed")

    async def __aenter__(self) -> "Queue":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{type(self).__name__} {self.queue_id!r} {state}>"
