"""Unified message-queue abstraction.

One ``Queue`` contract with two adapters: RabbitMQ (``queuekit.rabbit``,
aio-pika) and Amazon SQS (``queuekit.sqs``, aioboto3). Modules include
configuration, the error taxonomy, the AWS session provider, metrics and
tracing helpers.
"""

from queuekit.base import Delivery, Queue
from queuekit.config import CreateQueueConfig, RabbitMQConfig, ReceiveConfig, Settings, SQSConfig
from queuekit.errors import (
    CloseError,
    ConfigurationError,
    DeclarationError,
    ParseError,
    ProtocolError,
    QueueClosedError,
    QueueConnectionError,
    QueueError,
    SerializationError,
    TypeMismatchError,
)
from queuekit.rabbit import DeliveryStream, RabbitMQEnvelope, RabbitMQQueue, new_rabbitmq_queue
from queuekit.session import AwsSession, create_aws_session
from queuekit.sqs import ReceiveBatch, SQSEnvelope, SQSQueue, new_sqs_queue

__all__ = [
    "AwsSession",
    "CloseError",
    "ConfigurationError",
    "CreateQueueConfig",
    "DeclarationError",
    "Delivery",
    "DeliveryStream",
    "ParseError",
    "ProtocolError",
    "Queue",
    "QueueClosedError",
    "QueueConnectionError",
    "QueueError",
    "RabbitMQConfig",
    "RabbitMQEnvelope",
    "RabbitMQQueue",
    "ReceiveBatch",
    "ReceiveConfig",
    "SQSConfig",
    "SQSEnvelope",
    "SQSQueue",
    "SerializationError",
    "Settings",
    "TypeMismatchError",
    "create_aws_session",
    "new_rabbitmq_queue",
    "new_sqs_queue",
]
