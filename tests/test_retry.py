"""Tests for pg_health.retry."""

from __future__ import annotations

import psycopg2
import pytest

from pg_health.retry import RetryPolicy, is_transient, with_retry


class Flaky:
    def __init__(self, failures, exc=None, result="ok"):
        self.failures = failures
        self.exc = exc or psycopg2.OperationalError("connection reset")
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return self.result


class TestClassification:
    def test_network_errors_are_transient(self):
        assert is_transient(psycopg2.OperationalError("gone"))
        assert is_transient(psycopg2.InterfaceError("closed"))
        assert is_transient(ConnectionResetError())
        assert is_transient(TimeoutError())

    def test_query_errors_are_not(self):
        assert not is_transient(psycopg2.ProgrammingError("relation does not exist"))
        assert not is_transient(ValueError("bad"))


class TestRetryPolicy:
    def test_backoff_is_capped(self):
        policy = RetryPolicy(initial_delay=0.5, multiplier=2.0, max_delay=1.5)
        assert policy.delay_for(1) == 0.5
        assert policy.delay_for(2) == 1.0
        assert policy.delay_for(3) == 1.5
        assert policy.delay_for(10) == 1.5

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(multiplier=0.5)
        with pytest.raises(ValueError):
            RetryPolicy(jitter=2.0)

    def test_no_retry(self):
        assert RetryPolicy.no_retry().max_attempts == 1


class TestWithRetry:
    def test_succeeds_after_transient_failures(self):
        op = Flaky(2)
        sleeps = []
        assert with_retry(op, RetryPolicy(max_attempts=3), sleep=sleeps.append) == "ok"
        assert op.calls == 3
        assert sleeps == [0.2, 0.4]

    def test_gives_up_after_max_attempts(self):
        op = Flaky(5)
        with pytest.raises(psycopg2.OperationalError):
            with_retry(op, RetryPolicy(max_attempts=3), sleep=lambda _: None)
        assert op.calls == 3

    def test_semantic_error_not_retried(self):
        op = Flaky(1, exc=psycopg2.ProgrammingError("syntax error"))
        with pytest.raises(psycopg2.ProgrammingError):
            with_retry(op, RetryPolicy(max_attempts=3), sleep=lambda _: None)
        assert op.calls == 1

    def test_should_stop_ends_retries(self):
        op = Flaky(5)
        with pytest.raises(psycopg2.OperationalError):
            with_retry(op, RetryPolicy(max_attempts=5), sleep=lambda _: None, should_stop=lambda: True)
        assert op.calls == 1

    def test_custom_retryable(self):
        op = Flaky(1, exc=KeyError("x"))
        policy = RetryPolicy(retryable=lambda exc: isinstance(exc, KeyError))
        assert with_retry(op, policy, sleep=lambda _: None) == "ok"

    def test_logs_retries(self, caplog):
        with caplog.at_level("WARNING", logger="pg_health.retry"):
            with_retry(Flaky(1), RetryPolicy(), description="unused_indexes on db1", sleep=lambda _: None)
        assert "unused_indexes on db1 failed (attempt 1/3)" in caplog.text
