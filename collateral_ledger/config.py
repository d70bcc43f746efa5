"""Configuration for the collateralized lending engine."""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
import os

from .core import ConfigurationError, NATIVE_ASSET_DECIMALS, NATIVE_ASSET_SYMBOL


# Loan-to-value ratio in percent: principal = collateral * LTV_RATIO // 100
LTV_RATIO = 50

# Early-repayment rebate in percent of interest
REBATE_PERCENT = 10

# Repayment strictly earlier than due_date - REBATE_WINDOW earns the rebate
REBATE_WINDOW = timedelta(days=1)

MIN_INTEREST_RATE = 1
MAX_INTEREST_RATE = 100

CONTRACT_WALLET = "collateralized_loan"


@dataclass(frozen=True)
class LendingConfig:
    """Parameters of a lending engine instance."""

    ltv_ratio: int = LTV_RATIO
    min_interest_rate: int = MIN_INTEREST_RATE
    max_interest_rate: int = MAX_INTEREST_RATE
    rebate_percent: int = REBATE_PERCENT
    rebate_window: timedelta = REBATE_WINDOW
    asset_symbol: str = NATIVE_ASSET_SYMBOL
    asset_decimals: int = NATIVE_ASSET_DECIMALS
    contract_wallet: str = CONTRACT_WALLET
    log_level: str = "INFO"

    def __post_init__(self):
        if not 1 <= self.ltv_ratio <= 100:
            raise ConfigurationError(f"ltv_ratio must be in [1, 100], got {self.ltv_ratio}")
        if not 0 <= self.rebate_percent <= 100:
            raise ConfigurationError(f"rebate_percent must be in [0, 100], got {self.rebate_percent}")
        if self.rebate_window < timedelta(0):
            raise ConfigurationError(f"rebate_window cannot be negative, got {self.rebate_window}")
        if self.min_interest_rate < 1 or self.min_interest_rate > self.max_interest_rate:
            raise ConfigurationError(
                f"invalid interest rate bounds [{self.min_interest_rate}, {self.max_interest_rate}]"
            )
        if not self.asset_symbol or not self.asset_symbol.strip():
            raise ConfigurationError("asset_symbol cannot be empty")
        if not self.contract_wallet or not self.contract_wallet.strip():
            raise ConfigurationError("contract_wallet cannot be empty")

    @classmethod
    def from_env(cls) -> "LendingConfig":
        """Create config from environment variables, falling back to defaults."""
        try:
            return cls(
                ltv_ratio=int(os.getenv("LENDING_LTV_RATIO", str(LTV_RATIO))),
                rebate_percent=int(os.getenv("LENDING_REBATE_PERCENT", str(REBATE_PERCENT))),
                rebate_window=timedelta(seconds=int(os.getenv(
                    "LENDING_REBATE_WINDOW_SECONDS", str(int(REBATE_WINDOW.total_seconds()))
                ))),
                asset_symbol=os.getenv("LENDING_ASSET_SYMBOL", NATIVE_ASSET_SYMBOL),
                contract_wallet=os.getenv("LENDING_CONTRACT_WALLET", CONTRACT_WALLET),
                log_level=os.getenv("LOG_LEVEL", "INFO"),
            )
        except ValueError as exc:
            raise ConfigurationError(f"invalid lending environment: {exc}") from exc
