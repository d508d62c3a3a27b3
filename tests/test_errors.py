"""
Tests for the pipeline error taxonomy.

Tests:
- Only storage failures are retryable
- Each condition describes itself with its audit code
"""
import pytest

from app.core.errors import (
    DispatchFailure,
    LowConfidence,
    MalformedEvent,
    ModelError,
    ModelTimeout,
    NoEligibleAgent,
    NoTicket,
    StorageError,
)


@pytest.mark.parametrize("error, retryable", [
    (MalformedEvent("x"), False),
    (NoTicket("x"), True),
    (StorageError("x"), True),
    (NoEligibleAgent("x"), False),
    (ModelTimeout("x"), False),
    (LowConfidence("x"), False),
    (DispatchFailure("x"), False),
])
def test_only_storage_failures_are_retryable(error, retryable):
    assert error.retryable is retryable


def test_describe_prefixes_the_audit_code():
    assert NoTicket("database unavailable").describe() == "no_ticket: database unavailable"
    assert ModelTimeout("no response after 2s").describe() == "model_timeout: no response after 2s"
    assert isinstance(ModelTimeout("x"), ModelError)
    assert LowConfidence.code == "low_confidence"
    assert NoEligibleAgent.code == "no_eligible_agent"
