from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any

import pytest


class FakeExchange:
    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def publish(self, message, routing_key, *, mandatory=True, immediate=False, timeout=None):
        if self.error is not None:
            raise self.error
        self.published.append(
            {"message": message, "routing_key": routing_key, "mandatory": mandatory, "immediate": immediate}
        )


class FakeAmqpQueue:
    def __init__(self, name: str) -> None:
        self.name = name
        self.consume_calls: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self._callback = None

    async def consume(self, callback, no_ack=False, exclusive=False, arguments=None, consumer_tag=None, timeout=None):
        self._callback = callback
        self.consume_calls.append(
            {"no_ack": no_ack, "exclusive": exclusive, "arguments": arguments, "consumer_tag": consumer_tag}
        )
        return consumer_tag or "ctag-1"

    async def cancel(self, consumer_tag, timeout=None, nowait=False):
        self.cancelled.append(consumer_tag)

    async def deliver(self, message) -> None:
        assert self._callback is not None, "consume() was not called"
        await self._callback(message)


class FakeUnderlay:
    def __init__(self) -> None:
        self.rejected: list[tuple[int, bool]] = []

    async def basic_reject(self, delivery_tag, *, requeue=True):
        self.rejected.append((delivery_tag, requeue))


class FakeCallbacks:
    """Stands in for aio-pika's ``CallbackCollection``."""

    def __init__(self, sender) -> None:
        self.sender = sender
        self.callbacks: list = []

    def add(self, callback) -> None:
        self.callbacks.append(callback)

    def fire(self, exc: Exception | None = None) -> None:
        for callback in self.callbacks:
            callback(self.sender, exc)


class FakeChannel:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.default_exchange = FakeExchange()
        self.underlay = FakeUnderlay()
        self.declared: list[dict[str, Any]] = []
        self.qos: list[int] = []
        self.queue: FakeAmqpQueue | None = None
        self.declare_error: Exception | None = None
        self.close_error: Exception | None = None
        self.close_callbacks = FakeCallbacks(self)

    async def set_qos(self, prefetch_count=0, **_kwargs):
        self.qos.append(prefetch_count)

    async def declare_queue(self, name, *, durable=False, exclusive=False, passive=False, auto_delete=False, arguments=None, timeout=None):
        if self.declare_error is not None:
            raise self.declare_error
        self.declared.append(
            {"name": name, "durable": durable, "exclusive": exclusive, "auto_delete": auto_delete, "arguments": arguments}
        )
        self.queue = FakeAmqpQueue(name)
        return self.queue

    async def get_underlay_channel(self):
        return self.underlay

    async def close(self):
        self.events.append("channel.close")
        if self.close_error is not None:
            raise self.close_error


class FakeConnection:
    def __init__(self) -> None:
        self.events: list[str] = []
        self.channel_obj = FakeChannel(self.events)
        self.close_error: Exception | None = None

    async def channel(self):
        return self.channel_obj

    async def close(self):
        self.events.append("connection.close")
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def amqp(monkeypatch):
    """Patch ``queuekit.rabbit.connect`` to hand out a fake connection."""
    state = SimpleNamespace(connection=FakeConnection(), connect_calls=[], connect_error=None)

    async def fake_connect(url, settings=None):
        state.connect_calls.append(url)
        if state.connect_error is not None:
            raise state.connect_error
        return state.connection

    monkeypatch.setattr("queuekit.rabbit.connect", fake_connect)
    return state


def incoming_from(published: dict[str, Any], delivery_tag: int = 1) -> SimpleNamespace:
    """Build what aio-pika would deliver for a message captured by FakeExchange."""
    message = published["message"]
    return SimpleNamespace(
        body=message.body,
        delivery_tag=delivery_tag,
        message_id=message.message_id,
        content_type=message.content_type,
        priority=message.priority,
        timestamp=message.timestamp,
        redelivered=False,
        headers=dict(message.headers or {}),
    )


class FakeSQSClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, list[Any]] = {}

    def queue_response(self, method: str, response: Any) -> None:
        """Queue a dict to return, or an exception to raise, for the next ``method`` call."""
        self.responses.setdefault(method, []).append(response)

    async def _dispatch(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((method, params))
        pending = self.responses.get(method) or []
        result = pending.pop(0) if pending else {}
        if isinstance(result, Exception):
            raise result
        return result

    async def create_queue(self, **params):
        return await self._dispatch("create_queue", params)

    async def send_message(self, **params):
        return await self._dispatch("send_message", params)

    async def receive_message(self, **params):
        return await self._dispatch("receive_message", params)

    async def delete_message(self, **params):
        return await self._dispatch("delete_message", params)


class FakeSession:
    def __init__(self) -> None:
        self.sqs = FakeSQSClient()
        self.opened = 0

    @asynccontextmanager
    async def _client(self):
        self.opened += 1
        yield self.sqs

    def client(self, service: str = "sqs"):
        assert service == "sqs"
        return self._client()


QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/orders"


@pytest.fixture
def sqs_session():
    session = FakeSession()
    session.sqs.queue_response("create_queue", {"QueueUrl": QUEUE_URL})
    return session


@pytest.fixture
def make_incoming():
    return incoming_from


@pytest.fixture
def queue_url():
    return QUEUE_URL
