"""
Tests for structured logging, retry with backoff and the circuit breaker.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from src.core.exceptions import StaleStateError
from src.core.logging_service import (
    ContextLogger,
    JSONFormatter,
    correlation_id_ctx,
    get_logger,
    log_trade_event,
    set_correlation_id,
    trade_fields,
    trade_log_context,
)
from src.core.retry import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    calculate_backoff,
    retry_async,
)


# ============================================================================
# Logging Service Tests
# ============================================================================

class TestLoggingService:
    """Tests for the structured logging service."""

    def test_json_formatter(self):
        formatter = JSONFormatter()
        record = logging.LogRecord(
            name="trading.events",
            level=logging.INFO,
            pathname="trade_engine.py",
            lineno=42,
            msg="Trade event: trade_accepted",
            args=(),
            exc_info=None,
        )
        record.trade_id = "abc"

        data = json.loads(formatter.format(record))

        assert data["message"] == "Trade event: trade_accepted"
        assert data["level"] == "INFO"
        assert data["logger"] == "trading.events"
        assert data["extra"]["trade_id"] == "abc"
        assert data["source"]["line"] == 42

    def test_json_formatter_stringifies_unserializable_extra(self):
        formatter = JSONFormatter(include_source=False)
        record = logging.LogRecord("t", logging.INFO, "x.py", 1, "msg", (), None)
        record.when = datetime(2026, 3, 1, tzinfo=timezone.utc)

        data = json.loads(formatter.format(record))

        assert "source" not in data
        assert data["extra"]["when"].startswith("2026-03-01")

    def test_context_logger_folds_kwargs_into_extra(self):
        context_logger = ContextLogger(logging.getLogger("context_test"), {})
        token = correlation_id_ctx.set("corr-123")

        try:
            msg, kwargs = context_logger.process("Trade shipped", {"trade_id": "t-1"})
            assert msg == "Trade shipped"
            assert kwargs["extra"]["correlation_id"] == "corr-123"
            assert kwargs["extra"]["trade_id"] == "t-1"
            assert "trade_id" not in kwargs
        finally:
            correlation_id_ctx.reset(token)

    def test_context_logger_tags_bound_trade(self):
        context_logger = get_logger("context_test")

        with trade_log_context("t-9"):
            _, bound = context_logger.process("Lock refused", {})
            _, explicit = context_logger.process("Lock refused", {"trade_id": "t-10"})
        _, unbound = context_logger.process("Lock refused", {})

        assert bound["extra"]["trade_id"] == "t-9"
        assert explicit["extra"]["trade_id"] == "t-10"
        assert "trade_id" not in unbound["extra"]

    def test_trade_fields(self):
        trade_id = uuid.uuid4()
        trade = SimpleNamespace(id=trade_id, trade_number="TRD-1-ABCD", status="pending", revision=2)

        assert trade_fields(trade) == {
            "trade_id": str(trade_id),
            "trade_number": "TRD-1-ABCD",
            "status": "pending",
            "revision": 2,
        }

    def test_log_trade_event_records_trade_fields(self, caplog):
        trade = SimpleNamespace(id=uuid.uuid4(), trade_number="TRD-1-ABCD", status="accepted", revision=1)

        with caplog.at_level(logging.INFO, logger="trading.events"):
            log_trade_event("trade_accepted", trade, actor_id="u-1")

        record = caplog.records[-1]
        assert record.getMessage() == "Trade event: trade_accepted TRD-1-ABCD"
        assert record.event_type == "trade_accepted"
        assert record.trade_id == str(trade.id)
        assert record.trade_number == "TRD-1-ABCD"
        assert record.status == "accepted"
        assert record.actor_id == "u-1"

    def test_set_correlation_id_generates_one(self):
        token = correlation_id_ctx.set(None)
        try:
            cid = set_correlation_id()
            assert len(cid) == 8
            assert correlation_id_ctx.get() == cid
        finally:
            correlation_id_ctx.reset(token)


# ============================================================================
# Retry and Circuit Breaker Tests
# ============================================================================

class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        breaker.record_failure()
        assert breaker.can_execute() is True

        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN
        assert breaker.can_execute() is False

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        breaker.last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=61)

        assert breaker.can_execute() is True
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0


class TestRetryAsync:

    def test_backoff_is_capped(self):
        assert calculate_backoff(10, base_delay=1.0, max_delay=5.0) <= 5.5

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise httpx.ConnectError("refused")
            return "ok"

        assert await retry_async(flaky, max_retries=3, base_delay=0.0) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        breaker = CircuitBreaker(failure_threshold=10)

        async def down():
            raise httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            await retry_async(down, max_retries=2, base_delay=0.0, circuit_breaker=breaker)
        assert breaker.failure_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        calls = []

        async def conflict():
            calls.append(1)
            raise StaleStateError()

        with pytest.raises(StaleStateError):
            await retry_async(conflict, max_retries=3, base_delay=0.0)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()

        async def never_called():
            raise AssertionError("should not run")

        with pytest.raises(CircuitOpenError):
            await retry_async(never_called, circuit_breaker=breaker)

    @pytest.mark.asyncio
    async def test_retryable_status_code(self):
        responses = iter([503, 200])

        def handler(request):
            return httpx.Response(next(responses))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await retry_async(client.get, "http://notify.local/", max_retries=1, base_delay=0.0)

        assert response.status_code == 200
