"""Exception taxonomy shared by every queue adapter.

All errors raised by ``queuekit`` derive from ``QueueError`` so callers can
catch the whole family at once, or pick a specific stage:

- ``ConfigurationError``: required field missing; raised before any network call.
- ``QueueConnectionError``: dial or client construction failed.
- ``DeclarationError``: queue declare/create failed after connecting.
- ``ProtocolError``: publish, consume, reject or delete rejected by the broker.
- ``TypeMismatchError``: an envelope from another adapter was passed in.
- ``ParseError``: an acknowledgment token could not be converted.
- ``SerializationError``: a body could not be turned into an envelope.
- ``QueueClosedError``: the handle was used after ``close()``.
- ``CloseError``: releasing one or more broker resources failed.

Broker-side errors are always chained (``raise ... from exc``) so the
original exception stays available on ``__cause__``.
"""
from __future__ import annotations

from typing import Optional


class QueueError(Exception):
    """Base class for every error raised by queue adapters."""


class ConfigurationError(QueueError):
    """A required configuration value is missing or unusable."""


class QueueConnectionError(QueueError):
    """Connecting to the broker (or building its client) failed."""


class DeclarationError(QueueError):
    """Queue declaration/creation failed after a successful connection."""


class ProtocolError(QueueError):
    """The broker rejected an operation.

    ``code`` carries the broker error code when one is reported (e.g.
    ``ReceiptHandleIsInvalid`` for SQS, the AMQP reply code for RabbitMQ).
    """

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class TypeMismatchError(QueueError, TypeError):
    """An envelope not produced by the receiving adapter was passed to it."""


class ParseError(QueueError, ValueError):
    """An acknowledgment token could not be parsed into the native form."""


class SerializationError(QueueError):
    """A message body could not be converted into an envelope."""


class QueueClosedError(QueueError):
    """The queue handle was used after ``close()``."""


class CloseError(QueueError):
    """Releasing broker resources failed.

    ``primary`` is the first failure observed; ``secondary`` is set when a
    later resource also failed to close.
    """

    def __init__(self, primary: BaseException, secondary: Optional[BaseException] = None) -> None:
        message = f"close failed: {primary}"
        if secondary is not None:
            message += f" (also: {secondary})"
        super().__init__(message)
        self.primary = primary
        self.secondary = secondary
