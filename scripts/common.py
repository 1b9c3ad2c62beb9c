"""Shared helpers for the queue scripts.

Builds a ``Queue`` for either backend from ``Settings`` plus CLI overrides so
the producer and consumer scripts stay backend-agnostic.
"""

import argparse
import logging
import os
from typing import Literal

from queuekit import (
    CreateQueueConfig,
    Queue,
    RabbitMQConfig,
    ReceiveConfig,
    Settings,
    SQSConfig,
    create_aws_session,
    new_rabbitmq_queue,
    new_sqs_queue,
)


Backend = Literal["rabbitmq", "sqs"]


def add_queue_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--backend", choices=["rabbitmq", "sqs"], default=os.getenv("QUEUE_BACKEND", "rabbitmq"))
    parser.add_argument("--queue", default=os.getenv("QUEUE_NAME", "orders"), help="Queue name to declare/create")
    parser.add_argument("--durable", action="store_true", help="Declare a durable RabbitMQ queue")
    parser.add_argument("--wait-time", type=int, default=int(os.getenv("SQS_WAIT_TIME_SECONDS", "20")))
    parser.add_argument("--max-messages", type=int, default=int(os.getenv("SQS_MAX_MESSAGES", "10")))
    parser.add_argument("--verbose", action="store_true")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def open_queue(args: argparse.Namespace, settings: Settings | None = None) -> Queue:
    """Create a queue handle for ``args.backend``."""
    settings = settings or Settings()
    if args.backend == "sqs":
        session = await create_aws_session(settings=settings)
        config = SQSConfig(
            queue=CreateQueueConfig(name=args.queue),
            receive=ReceiveConfig(wait_time_seconds=args.wait_time, max_messages=args.max_messages),
            delay_seconds=settings.sqs_delay_seconds,
        )
        return await new_sqs_queue(session, config)
    config = RabbitMQConfig(url=settings.rabbitmq_url, name=args.queue, durable=args.durable)
    return await new_rabbitmq_queue(config, settings=settings)
