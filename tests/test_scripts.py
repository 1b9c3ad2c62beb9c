import asyncio

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from queuekit import CreateQueueConfig, RabbitMQConfig, SQSConfig, new_rabbitmq_queue, new_sqs_queue
from scripts.consumer import consume
from scripts.producer import publish_all


@pytest.mark.asyncio
async def test_producer_sends_every_body(sqs_session):
    queue = await new_sqs_queue(sqs_session, SQSConfig(queue=CreateQueueConfig(name="orders")))
    sent = await publish_all(queue, [b"a", b"b"])
    assert sent == 2
    assert [c[1]["MessageBody"] for c in sqs_session.sqs.calls if c[0] == "send_message"] == ["a", "b"]


@pytest.mark.asyncio
async def test_consumer_loops_over_empty_sqs_batches(sqs_session):
    sqs = sqs_session.sqs
    sqs.queue_response("receive_message", {})
    sqs.queue_response("receive_message", {"Messages": [{"MessageId": "m1", "ReceiptHandle": "rh-1", "Body": "a"}]})
    sqs.queue_response("receive_message", {"Messages": [{"MessageId": "m2", "ReceiptHandle": "rh-2", "Body": "b"}]})
    queue = await new_sqs_queue(sqs_session, SQSConfig(queue=CreateQueueConfig(name="orders")))

    bodies = await consume(queue, limit=2)

    assert bodies == [b"a", b"b"]
    deleted = [c[1]["ReceiptHandle"] for c in sqs.calls if c[0] == "delete_message"]
    assert deleted == ["rh-1", "rh-2"]


@pytest.mark.asyncio
async def test_consumer_drains_rabbit_stream(amqp, make_incoming):
    queue = await new_rabbitmq_queue(RabbitMQConfig(url="amqp://localhost/", name="orders"))
    await publish_all(queue, [b"x", b"y"])
    channel = amqp.connection.channel_obj

    task = asyncio.create_task(consume(queue, limit=2))
    for _ in range(100):
        if channel.queue.consume_calls:
            break
        await asyncio.sleep(0.01)
    for tag, published in enumerate(channel.default_exchange.published, start=1):
        await channel.queue.deliver(make_incoming(published, delivery_tag=tag))

    bodies = await asyncio.wait_for(task, timeout=1)
    assert bodies == [b"x", b"y"]
    assert channel.underlay.rejected == [(1, False), (2, False)]
    assert channel.queue.cancelled == ["ctag-1"]


@pytest.mark.asyncio
async def test_consumer_continues_producer_trace(amqp, make_incoming):
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tracer = provider.get_tracer("test")

    queue = await new_rabbitmq_queue(RabbitMQConfig(url="amqp://localhost/", name="orders"))
    with tracer.start_as_current_span("publish") as publish_span:
        await queue.send(queue.compose_message(b"traced"))
    channel = amqp.connection.channel_obj
    published = channel.default_exchange.published[0]
    assert "traceparent" in published["message"].headers

    task = asyncio.create_task(consume(queue, limit=1, tracer=tracer))
    for _ in range(100):
        if channel.queue.consume_calls:
            break
        await asyncio.sleep(0.01)
    await channel.queue.deliver(make_incoming(published, delivery_tag=1))
    assert await asyncio.wait_for(task, timeout=1) == [b"traced"]

    process = [s for s in exporter.get_finished_spans() if s.name == "process"]
    assert len(process) == 1
    parent = publish_span.get_span_context()
    assert process[0].context.trace_id == parent.trace_id
    assert process[0].parent.span_id == parent.span_id
    assert process[0].attributes["queue"] == "orders"
