"""
Simple producer script.

- Builds a queue handle for RabbitMQ or SQS
- Composes each body into the backend's envelope and sends it

Examples:
    python -m scripts.producer --queue orders '{"id": 1}' '{"id": 2}'
    echo '{"id": 3}' | python -m scripts.producer --backend sqs --queue orders
"""

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from queuekit import Queue, Settings
from queuekit.metrics import start_metrics_server
from queuekit.tracing import get_tracer, start_tracing

from scripts.common import add_queue_arguments, configure_logging, open_queue


logger = logging.getLogger("scripts.producer")


async def publish_all(queue: Queue, bodies: Sequence[bytes]) -> int:
    """Compose and send every body; returns the number sent."""
    tracer = get_tracer("queuekit-producer")
    sent = 0
    for body in bodies:
        with tracer.start_as_current_span("publish") as span:
            span.set_attribute("queue", queue.queue_id)
            envelope = queue.compose_message(body)
            await queue.send(envelope)
        sent += 1
    return sent


async def main(args: argparse.Namespace) -> None:
    settings = Settings()
    if args.metrics:
        start_metrics_server(settings.metrics_port)
    start_tracing("queuekit-producer")

    bodies = [b.encode("utf-8") for b in args.bodies] or [sys.stdin.buffer.read()]
    async with await open_queue(args, settings) as queue:
        sent = await publish_all(queue, bodies)
    logger.info("sent %d message(s) to %s", sent, args.queue)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send messages to a RabbitMQ or SQS queue")
    add_queue_arguments(parser)
    parser.add_argument("--metrics", action="store_true", help="Expose Prometheus metrics on METRICS_PORT")
    parser.add_argument("bodies", nargs="*", help="Message bodies; reads one body from stdin when omitted")
    cli_args = parser.parse_args()
    configure_logging(cli_args.verbose)
    asyncio.run(main(cli_args))
