"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the ledger engine.

CRITICAL CONSTRAINTS:
- Fee rate is fixed at 0.1% unless explicitly overridden
- Scanner backoff is bounded by a ceiling
- Price lookups always have a timeout

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


# ============================================================
# FEES AND PRECISION
# ============================================================

@dataclass
class FeeConfig:
    """Trading fee and ledger precision."""

    fee_rate: Decimal = Decimal("0.001")
    """Fee applied to base amount (price * quantity)."""

    holding_epsilon: Decimal = Decimal("0.00000001")
    """A holding at or below this quantity is deleted."""

    quantum: Decimal = Decimal("0.00000001")
    """Rounding quantum for stored money and quantities."""

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.fee_rate < Decimal("1")):
            raise ConfigurationError("fee_rate", self.fee_rate, "must be in [0, 1)")


# ============================================================
# SCHEDULER CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """
    Scanner scheduling.

    Interval multiplies by ``backoff_multiplier`` after each failed cycle,
    capped at ``max_interval_seconds``; resets on success.
    """

    base_interval_seconds: float = 10.0
    max_interval_seconds: float = 60.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.base_interval_seconds <= 0:
            raise ConfigurationError(
                "base_interval_seconds", self.base_interval_seconds, "must be positive"
            )
        if self.max_interval_seconds < self.base_interval_seconds:
            raise ConfigurationError(
                "max_interval_seconds", self.max_interval_seconds, "must be >= base interval"
            )
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                "backoff_multiplier", self.backoff_multiplier, "must be >= 1"
            )


# ============================================================
# PRICE FEED CONFIGURATION
# ============================================================

@dataclass
class FeedConfig:
    """Price feed configuration."""

    provider: str = "binance"
    """Feed implementation: "binance" or "static"."""

    rest_url: str = "https://api.binance.com"
    quote_asset: str = "USDT"

    timeout_seconds: float = 5.0
    """Upper bound for one price lookup; exceeding it means Unavailable."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class LedgerEngineConfig:
    """Master configuration for the ledger engine."""

    fees: FeeConfig = field(default_factory=FeeConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)

    initial_balance: Decimal = Decimal("100000")
    """Balance credited when a user places their first order."""

    @classmethod
    def for_testing(cls) -> "LedgerEngineConfig":
        """Configuration for tests: static feed, short intervals."""
        return cls(
            scheduler=SchedulerConfig(
                base_interval_seconds=0.01,
                max_interval_seconds=0.08,
            ),
            feed=FeedConfig(provider="static", timeout_seconds=0.5),
        )

    @classmethod
    def from_env(cls) -> "LedgerEngineConfig":
        """Build configuration from environment variables (.env supported)."""
        load_dotenv()
        return cls(
            fees=FeeConfig(
                fee_rate=Decimal(os.getenv("LEDGER_FEE_RATE", "0.001")),
            ),
            scheduler=SchedulerConfig(
                base_interval_seconds=float(os.getenv("SCANNER_INTERVAL_SECONDS", "10")),
                max_interval_seconds=float(os.getenv("SCANNER_MAX_INTERVAL_SECONDS", "60")),
                backoff_multiplier=float(os.getenv("SCANNER_BACKOFF_MULTIPLIER", "2")),
            ),
            feed=FeedConfig(
                provider=os.getenv("PRICE_FEED_PROVIDER", "binance"),
                rest_url=os.getenv("PRICE_FEED_URL", "https://api.binance.com"),
                quote_asset=os.getenv("PRICE_FEED_QUOTE_ASSET", "USDT"),
                timeout_seconds=float(os.getenv("PRICE_FEED_TIMEOUT_SECONDS", "5")),
            ),
            initial_balance=Decimal(os.getenv("LEDGER_INITIAL_BALANCE", "100000")),
        )
