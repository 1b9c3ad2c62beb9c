"""
Simple consumer script.

- RabbitMQ: drains the push-based delivery stream
- SQS: loops on blocking batch pulls, skipping empty batches
- Prints each body and deletes it (reject without requeue on RabbitMQ)

Examples:
    python -m scripts.consumer --queue orders --limit 5
    python -m scripts.consumer --backend sqs --queue orders --limit 1 --keep
"""

import argparse
import asyncio
import logging
import signal
from typing import AsyncIterator, Optional

from opentelemetry import context  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore

from queuekit import Delivery, DeliveryStream, Queue, Settings
from queuekit.metrics import start_metrics_server
from queuekit.tracing import extract_context_from_headers, get_tracer, start_tracing

from scripts.common import add_queue_arguments, configure_logging, open_queue


logger = logging.getLogger("scripts.consumer")


async def iter_deliveries(queue: Queue, stop: asyncio.Event) -> AsyncIterator[Delivery]:
    """Yield deliveries from either backend until ``stop`` is set."""
    result = await queue.receive()
    if isinstance(result, DeliveryStream):
        stream = result

        async def _cancel_when_stopped() -> None:
            await stop.wait()
            await stream.cancel()

        watcher = asyncio.create_task(_cancel_when_stopped())
        try:
            async with stream:
                async for delivery in stream:
                    yield delivery
                    if stop.is_set():
                        return
        finally:
            watcher.cancel()
        return

    while not stop.is_set():
        for delivery in result:
            yield delivery
            if stop.is_set():
                return
        result = await queue.receive()


async def consume(
    queue: Queue,
    limit: int,
    delete: bool = True,
    stop: asyncio.Event | None = None,
    tracer: Optional[Tracer] = None,
) -> list[bytes]:
    """Consume up to ``limit`` messages (0 = unbounded) and return their bodies.

    Each message is handled in a ``process`` span parented on the trace
    context the producer put in its headers or message attributes.
    """
    stop = stop or asyncio.Event()
    tracer = tracer or get_tracer("queuekit-consumer")
    bodies: list[bytes] = []
    async for delivery in iter_deliveries(queue, stop):
        token = context.attach(extract_context_from_headers(delivery.attributes))
        try:
            with tracer.start_as_current_span("process") as span:
                span.set_attribute("queue", queue.queue_id)
                span.set_attribute("message_id", delivery.message_id or "")
                bodies.append(delivery.body)
                logger.info("received %s (%d bytes)", delivery.message_id, len(delivery.body))
                if delete:
                    await queue.delete(delivery.ack_token)
        finally:
            context.detach(token)
        if limit and len(bodies) >= limit:
            stop.set()
    return bodies


async def main(args: argparse.Namespace) -> None:
    settings = Settings()
    if args.metrics:
        start_metrics_server(settings.metrics_port)
    start_tracing("queuekit-consumer")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with await open_queue(args, settings) as queue:
        for body in await consume(queue, args.limit, delete=not args.keep, stop=stop):
            print(body.decode("utf-8", errors="replace"))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Receive messages from a RabbitMQ or SQS queue")
    add_queue_arguments(parser)
    parser.add_argument("--limit", type=int, default=0, help="Stop after this many messages (0 = run until signalled)")
    parser.add_argument("--keep", action="store_true", help="Do not delete/reject received messages")
    parser.add_argument("--metrics", action="store_true", help="Expose Prometheus metrics on METRICS_PORT")
    cli_args = parser.parse_args()
    configure_logging(cli_args.verbose)
    asyncio.run(main(cli_args))
