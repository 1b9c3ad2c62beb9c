"""AWS session provider for the SQS adapter.

The SQS adapter only needs an object whose ``client()`` method returns an
async context manager yielding an SQS client. ``AwsSession`` is the default
implementation on top of ``aioboto3``; tests substitute a fake.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import aioboto3

from queuekit.config import Settings
from queuekit.errors import QueueConnectionError


logger = logging.getLogger(__name__)


class AwsSession:
    """A configured ``aioboto3.Session`` plus client defaults (region, endpoint)."""

    def __init__(
        self,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url or None
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name=region,
        )

    def client(self, service: str = "sqs") -> Any:
        """Return an async context manager yielding a client for ``service``."""
        return self._session.client(service, region_name=self.region, endpoint_url=self.endpoint_url)

    async def has_credentials(self) -> bool:
        credentials = await self._session.get_credentials()
        if credentials is None:
            return False
        frozen = await credentials.get_frozen_credentials()
        return bool(frozen.access_key) and bool(frozen.secret_key)


async def create_aws_session(
    region: Optional[str] = None,
    access_key_id: Optional[str] = None,
    secret_access_key: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> AwsSession:
    """Build an ``AwsSession`` from explicit values, falling back to ``Settings``.

    Raises ``QueueConnectionError`` when no access key id/secret can be resolved
    from the arguments, the environment or the default credential chain.
    """
    settings = settings or Settings()
    session = AwsSession(
        region=region or settings.aws_region,
        access_key_id=access_key_id or settings.aws_access_key_id,
        secret_access_key=secret_access_key or settings.aws_secret_access_key,
        endpoint_url=endpoint_url or settings.aws_endpoint_url,
    )
    try:
        ok = await session.has_credentials()
    except Exception as exc:  # noqa: BLE001
        raise QueueConnectionError(f"unable to load aws credentials: {exc}") from exc
    if not ok:
        raise QueueConnectionError("unable to load aws credentials")
    logger.info("aws session ready (region=%s, endpoint=%s)", session.region, session.endpoint_url or "default")
    return session
