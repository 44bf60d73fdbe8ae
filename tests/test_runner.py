"""
Tests for the fail-open Policy Runner.
"""

import time

import pytest

from hookguard.models import Event, ExecutionResult, PolicyDescriptor, PolicyError, Verdict
from hookguard.policy.runner import PolicyRunner


def descriptor(timeout_ms=500):
    return PolicyDescriptor(id="p1", timeout_ms=timeout_ms)


class TestPolicyRunner:
    """Test suite for PolicyRunner."""

    def test_passes_verdict_through(self):
        """Normal results keep verdict and message and get stamped."""
        result = PolicyRunner().run(lambda e: ExecutionResult.block("nope"), Event(), descriptor())
        assert result.verdict is Verdict.BLOCK
        assert result.message == "nope"
        assert result.policy_id == "p1"
        assert result.from_cache is False
        assert result.error is None
        assert result.duration_ms >= 0

    def test_none_means_allow(self):
        """Returning None is an allow."""
        result = PolicyRunner().run(lambda e: None, Event(), descriptor())
        assert result.verdict is Verdict.ALLOW
        assert result.error is None

    def test_timeout_fails_open(self):
        """A policy that never returns in time yields allow with error=timeout."""
        def slow(event):
            time.sleep(2)
            return ExecutionResult.block("too late")

        start = time.perf_counter()
        result = PolicyRunner().run(slow, Event(), descriptor(timeout_ms=100))
        assert time.perf_counter() - start < 1.5
        assert result.verdict is Verdict.ALLOW
        assert result.error == "timeout"

    def test_exception_fails_open(self):
        """Exceptions become allow with the error recorded."""
        def broken(event):
            raise PolicyError("regex table missing")

        result = PolicyRunner().run(broken, Event(), descriptor())
        assert result.verdict is Verdict.ALLOW
        assert result.error == "PolicyError: regex table missing"
        assert result.message is None

    def test_invalid_return_fails_open(self):
        """Anything other than an ExecutionResult is treated as an error."""
        result = PolicyRunner().run(lambda e: "block", Event(), descriptor())
        assert result.verdict is Verdict.ALLOW
        assert result.error == "invalid result"

    @pytest.mark.parametrize("bad", [
        ExecutionResult(verdict="block", message="string verdict"),
        ExecutionResult(verdict=Verdict.BLOCK, message=["not", "text"]),
        ExecutionResult(verdict=Verdict.ALLOW, fix=b"bytes"),
    ])
    def test_malformed_result_fails_open(self, bad):
        """Results with wrongly typed fields are treated as an error."""
        result = PolicyRunner().run(lambda e: bad, Event(), descriptor())
        assert result.verdict is Verdict.ALLOW
        assert result.error == "invalid result"
        assert result.message is None
