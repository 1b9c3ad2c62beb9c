import pytest
from prometheus_client import REGISTRY

from queuekit.metrics import observe


def _count(operation: str, result: str) -> float:
    value = REGISTRY.get_sample_value(
        "queue_operation_total", {"adapter": "test", "operation": operation, "result": result}
    )
    return value or 0.0


def test_observe_counts_success_and_failure():
    ok_before = _count("send", "ok")
    err_before = _count("send", "error")

    with observe("test", "send"):
        pass
    with pytest.raises(RuntimeError):
        with observe("test", "send"):
            raise RuntimeError("boom")

    assert _count("send", "ok") == ok_before + 1
    assert _count("send", "error") == err_before + 1
