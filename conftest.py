"""
Shared fixtures: a platform with a controllable clock and a pool factory.
"""

import pytest

from tfp_access_control_v1 import Role
from tfp_config import usd
from tfp_e2e_integration_v1 import DAY, TradeFlowPlatform

START = 1_800_000_000


class FakeClock:
    """Injectable now_fn returning unix seconds."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def platform(clock):
    p = TradeFlowPlatform(
        grants={
            "ADMIN": [Role.ADMIN],
            "AMC": [Role.VERIFIER],
            "SERVICER": [Role.SERVICER],
        },
        now_fn=clock
    )
    p.directory.approve("ADMIN", "EXP-001", "kyc-hash", "cac-hash", "bank-hash", "Lagos Cocoa Ltd", "NG")
    return p


@pytest.fixture
def verified_receivable(platform, clock):
    """Factory: create and verify a receivable, return its id."""
    def _make(amount=usd(10_000), apr=1200, risk_score=30):
        receivable_id = platform.receivables.create_receivable(
            "EXP-001", "IMP-001", amount, clock.now + 90 * DAY, "ipfs://invoice"
        )
        platform.receivables.verify_receivable("AMC", receivable_id, risk_score, apr)
        return receivable_id
    return _make


@pytest.fixture
def make_pool(platform, clock, verified_receivable):
    """Factory: verified receivable plus an ACTIVE pool on it."""
    def _make(target=usd(10_000), min_investment=usd(100), max_investment=None,
              reward_pool=0, receivable_amount=None, **kwargs):
        receivable_id = verified_receivable(amount=receivable_amount or target)
        return platform.engine.create_pool(
            "AMC",
            receivable_id,
            target_amount=target,
            min_investment=min_investment,
            max_investment=max_investment or target,
            maturity_date=clock.now + 30 * DAY,
            reward_pool=reward_pool,
            **kwargs
        )
    return _make


@pytest.fixture
def fund(platform):
    """Deposit settlement currency to one or more accounts."""
    def _fund(amount, *accounts):
        for account in accounts:
            platform.currency.deposit(account, amount)
    return _fund
