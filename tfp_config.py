"""
TradeFlow Pools (TFP) - Configuration
Version: 1.0.0

Engine-wide settings loaded from the environment, plus the frozen fee policy
that every pool snapshots at creation.
"""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================
# NUMERIC CONVENTIONS
# ============================================

CURRENCY_DECIMALS = 6
TOKEN_DECIMALS = 18

CURRENCY_UNIT = 10 ** CURRENCY_DECIMALS  # 1 USD in settlement micro-units
TOKEN_UNIT = 10 ** TOKEN_DECIMALS        # 1 claim/reward token

# 1 unit of capital = 1 claim token
CLAIM_TOKENS_PER_CURRENCY_UNIT = TOKEN_UNIT // CURRENCY_UNIT

BPS_DENOMINATOR = 10_000


def usd(dollars: int) -> int:
    """Whole dollars to settlement micro-units."""
    return dollars * CURRENCY_UNIT


def format_usd(amount: int) -> str:
    """Render micro-units for log lines without float arithmetic."""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), CURRENCY_UNIT)
    return f"{sign}${whole:,}.{frac:06d}"


# ============================================
# SETTINGS
# ============================================

class Settings(BaseSettings):
    """Configuration loaded from TFP_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TFP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = "tradeflow-pools"
    log_level: str = "INFO"

    # Fees applied at disbursement
    platform_fee_bps: int = 100
    amc_fee_bps: int = 200

    # Treasury accounts receiving fees and rounding remainders
    platform_treasury: str = "TREASURY-PLATFORM"
    amc_treasury: str = "TREASURY-AMC"

    # HMAC key for enforcement decisions and pool events (rotate quarterly)
    decision_secret: str = "TFP_DECISION_SECRET_ROTATE_QUARTERLY"

    # Identity granted ADMIN when the HTTP service starts
    bootstrap_admin: str = "ADMIN-001"

    def pool_policy(self) -> "PoolPolicy":
        return PoolPolicy(
            platform_fee_bps=self.platform_fee_bps,
            amc_fee_bps=self.amc_fee_bps,
            platform_treasury=self.platform_treasury,
            amc_treasury=self.amc_treasury,
        )


@dataclass(frozen=True)
class PoolPolicy:
    """Fee parameters frozen onto a pool when it is created."""
    platform_fee_bps: int
    amc_fee_bps: int
    platform_treasury: str
    amc_treasury: str

    def is_valid(self) -> bool:
        return (
            self.platform_fee_bps >= 0 and
            self.amc_fee_bps >= 0 and
            self.platform_fee_bps + self.amc_fee_bps <= BPS_DENOMINATOR and
            bool(self.platform_treasury) and
            bool(self.amc_treasury)
        )


settings = Settings()
