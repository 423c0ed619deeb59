"""
Configuration, State Machine and Error Registry Tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.clock import get_clock, now_utc, use_mock_clock
from core.exceptions import ConfigurationError, InsufficientBalance, OrderRejected
from execution_engine.config import FeeConfig, LedgerEngineConfig, SchedulerConfig
from execution_engine.errors import ERROR_CODES, RETRYABLE_ERROR_CODES, get_error_info, is_retryable
from execution_engine.state_machine import TransitionGuard
from execution_engine.types import OrderStatus


class TestConfig:
    """Tests for configuration validation."""

    def test_defaults(self):
        config = LedgerEngineConfig()

        assert config.fees.fee_rate == Decimal("0.001")
        assert config.scheduler.base_interval_seconds == 10
        assert config.scheduler.max_interval_seconds == 60
        assert config.initial_balance == Decimal("100000")

    def test_fee_rate_out_of_range(self):
        with pytest.raises(ConfigurationError):
            FeeConfig(fee_rate=Decimal("1.5"))

    def test_ceiling_below_baseline(self):
        with pytest.raises(ConfigurationError):
            SchedulerConfig(base_interval_seconds=30, max_interval_seconds=10)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SCANNER_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("PRICE_FEED_PROVIDER", "static")

        config = LedgerEngineConfig.from_env()

        assert config.scheduler.base_interval_seconds == 15
        assert config.feed.provider == "static"


class TestTransitionGuard:
    """Tests for the order state machine."""

    def test_pending_can_complete_or_cancel(self):
        assert TransitionGuard.can_transition(OrderStatus.PENDING, OrderStatus.COMPLETED)[0]
        assert TransitionGuard.can_transition(OrderStatus.PENDING, OrderStatus.CANCELLED)[0]

    @pytest.mark.parametrize("terminal", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        for target in OrderStatus:
            allowed, reason = TransitionGuard.can_transition(terminal, target)
            assert not allowed
            assert "terminal" in reason

    def test_source_status(self):
        assert TransitionGuard.source_status_for(OrderStatus.CANCELLED) == OrderStatus.PENDING
        with pytest.raises(ValueError):
            TransitionGuard.source_status_for(OrderStatus.PENDING)


class TestErrorRegistry:
    """Tests for error codes."""

    def test_feed_and_validation_errors_are_retryable(self):
        assert is_retryable("feed_unavailable")
        assert is_retryable("insufficient_balance")
        assert not is_retryable("not_pending")
        assert "persistence_failure" in ERROR_CODES

    def test_unknown_code(self):
        info = get_error_info("something_else")
        assert not info.is_retryable
        assert "something_else" not in RETRYABLE_ERROR_CODES

    def test_exceptions_carry_code_and_detail(self):
        error = InsufficientBalance("alice", Decimal("100.1"), Decimal("100"))

        assert error.code == "insufficient_balance"
        assert "100.1" in error.detail
        assert error.to_dict()["context"]["user_id"] == "alice"
        assert OrderRejected("invalid_price", "bad").code == "invalid_price"


class TestClock:
    """Tests for the process-wide clock."""

    def test_use_mock_swaps_and_restores(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        original = get_clock()

        with use_mock_clock(start) as clock:
            assert now_utc() == start
            clock.advance(seconds=5)
            assert now_utc() == start + timedelta(seconds=5)
            clock.set_time(datetime(2025, 1, 1))
            assert now_utc().tzinfo is not None

        assert get_clock() is original
