import pytest
from pydantic import ValidationError

from queuekit.config import RabbitMQConfig, Settings, SQSConfig
from queuekit.errors import QueueConnectionError
from queuekit.session import AwsSession, create_aws_session


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("SQS_DELAY_SECONDS", raising=False)
    monkeypatch.delenv("RABBITMQ_URL", raising=False)
    s = Settings()
    assert s.sqs_delay_seconds == 0
    assert s.rabbitmq_url.startswith("amqp://")


def test_settings_only_carries_queue_concerns():
    assert set(Settings.model_fields) == {
        "rabbitmq_url",
        "metrics_port",
        "rabbitmq_ssl_ca_path",
        "rabbitmq_ssl_cert_path",
        "rabbitmq_ssl_key_path",
        "rabbitmq_ssl_verify",
        "rabbitmq_ssl_check_hostname",
        "aws_region",
        "aws_access_key_id",
        "aws_secret_access_key",
        "aws_endpoint_url",
        "sqs_delay_seconds",
    }


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("SQS_DELAY_SECONDS", "10")
    monkeypatch.setenv("AWS_REGION", "eu-central-1")
    monkeypatch.setenv("RABBITMQ_URL", "amqps://user:pass@mq:5671/prod")
    s = Settings()
    assert s.sqs_delay_seconds == 10
    assert s.aws_region == "eu-central-1"
    assert s.rabbitmq_url == "amqps://user:pass@mq:5671/prod"


def test_queue_configs_are_read_only():
    cfg = RabbitMQConfig(name="orders")
    with pytest.raises(ValidationError):
        cfg.name = "other"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        SQSConfig().delay_seconds = 5  # type: ignore[misc]


def test_rabbitmq_priority_bounds():
    with pytest.raises(ValidationError):
        RabbitMQConfig(name="orders", priority=256)


@pytest.mark.asyncio
async def test_create_aws_session_requires_credentials(monkeypatch):
    async def no_credentials(self):
        return False

    monkeypatch.setattr(AwsSession, "has_credentials", no_credentials)
    with pytest.raises(QueueConnectionError, match="unable to load aws credentials"):
        await create_aws_session(region="us-east-1")


@pytest.mark.asyncio
async def test_create_aws_session_uses_settings(monkeypatch):
    async def has_credentials(self):
        return True

    monkeypatch.setattr(AwsSession, "has_credentials", has_credentials)
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("AWS_ENDPOINT_URL", "http://localhost:4566")
    session = await create_aws_session()
    assert session.region == "eu-west-1"
    assert session.endpoint_url == "http://localhost:4566"
