"""Shared constants for queue adapters.

Adapter names are used as metric labels and in log lines so both adapters
report consistently.

Operations (metric ``operation`` label):
- ``connect``: dial the broker / build the client.
- ``declare``: declare (AMQP) or create (SQS) the named queue.
- ``send``: publish a composed envelope.
- ``receive``: start a consumer (AMQP) or pull a batch (SQS).
- ``delete``: reject (AMQP) or delete (SQS) a received message.
- ``close``: release the handle.
"""

ADAPTER_RABBITMQ = "rabbitmq"
ADAPTER_SQS = "sqs"

OP_CONNECT = "connect"
OP_DECLARE = "declare"
OP_SEND = "send"
OP_RECEIVE = "receive"
OP_DELETE = "delete"
OP_CLOSE = "close"

RESULT_OK = "ok"
RESULT_ERROR = "error"

# AMQP envelope defaults
DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_PRIORITY = 1

# AMQP consumer QoS
DEFAULT_PREFETCH_COUNT = 10

# delivery tags are unsigned 64-bit
MAX_DELIVERY_TAG = 2**64 - 1

# SQS service limits
SQS_MAX_DELAY_SECONDS = 900
SQS_MAX_MESSAGES = 10
SQS_MAX_WAIT_TIME_SECONDS = 20
SQS_MAX_VISIBILITY_TIMEOUT = 43200
DEFAULT_SQS_DELAY_SECONDS = 0
