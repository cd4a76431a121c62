"""
TradeFlow Pools (TFP) - Test Suite
Version: 1.0.0

Coverage:
- Invariant unit tests (invariant in isolation)
- Enforcement tests (signatures, rollback)
- Ledger tests (directory, receivables, claim tokens)
- Pool engine scenarios and failure tests
"""

import pytest
from types import SimpleNamespace

from tfp_balances_v1 import CurrencyLedger, escrow_account
from tfp_config import TOKEN_UNIT, PoolPolicy, settings, usd
from tfp_e2e_integration_v1 import DAY
from tfp_enforcement_v1 import (
    AlreadyVerified,
    BelowMinimum,
    CapacityExceeded,
    Criticality,
    DecisionLedger,
    EnforcementDecision,
    EnforcementResult,
    InsufficientBalance,
    InvalidAmount,
    InvalidDueDate,
    Invariant,
    InvariantEnforcer,
    InvariantType,
    InvariantViolation,
    NotFound,
    SystemCompromised,
    TransferFailed,
    Unauthorized,
    WrongState
)
from tfp_pool_engine_v1 import (
    PaymentStatus,
    PoolStatus,
    PoolType,
    compute_fee_split
)
from tfp_pool_invariants_v1 import (
    DisbursementExactlyOnce,
    FeeSplitConserved,
    ForwardOnlyStatus,
    InvestedWithinTarget,
    InvestorCapRespected,
    PaymentStatusConsistent
)
from tfp_receivable_ledger_v1 import ReceivableStatus
from tfp_token_ledgers_v1 import ClaimTokenLedger, RewardEmitter

DEFAULT_POLICY = PoolPolicy(100, 200, "TREASURY-PLATFORM", "TREASURY-AMC")

# ============================================
# MOCKS
# ============================================

def mock_pool(**overrides):
    fields = dict(
        id="POOL-TEST",
        target_amount=usd(10_000),
        max_investment=usd(5_000),
        total_invested=0,
        total_paid=0,
        payment_status=PaymentStatus.NONE,
        status=PoolStatus.ACTIVE,
        disbursement=None,
        policy=DEFAULT_POLICY
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class AlwaysFails(Invariant):
    def __init__(self):
        super().__init__(
            id="test_always_fails",
            statement="Never holds",
            type=InvariantType.STATE,
            criticality=Criticality.CRITICAL,
            dependencies=[],
            owner="tests"
        )

    def post_check(self, result):
        return False


class DependsOn(Invariant):
    def __init__(self, id, dependencies):
        super().__init__(id, "test", InvariantType.STATE, Criticality.OPTIONAL, dependencies, "tests")

    def post_check(self, result):
        return True

# ============================================
# INVARIANT UNIT TESTS
# ============================================

class TestInvestedWithinTarget:
    """Test POOL-001: total invested within target."""

    def test_post_check_at_target(self):
        """Exactly at target holds."""
        inv = InvestedWithinTarget()
        pool = mock_pool(total_invested=usd(10_000))
        assert inv.post_check({'pool': pool}) == True

    def test_post_check_over_target(self):
        """One micro-unit over target fails."""
        inv = InvestedWithinTarget()
        pool = mock_pool(total_invested=usd(10_000) + 1)
        assert inv.post_check({'pool': pool}) == False


class TestInvestorCapRespected:
    """Test POOL-002: per-investor cap."""

    def test_post_check_within_cap(self):
        inv = InvestorCapRespected()
        pool = mock_pool(total_invested=usd(8_000))
        result = {'pool': pool, 'investments': {'A': usd(5_000), 'B': usd(3_000)}}
        assert inv.post_check(result) == True

    def test_post_check_over_cap(self):
        inv = InvestorCapRespected()
        pool = mock_pool(total_invested=usd(6_000))
        result = {'pool': pool, 'investments': {'A': usd(6_000)}}
        assert inv.post_check(result) == False

    def test_post_check_totals_disagree(self):
        """Investments must sum to total_invested."""
        inv = InvestorCapRespected()
        pool = mock_pool(total_invested=usd(4_000))
        result = {'pool': pool, 'investments': {'A': usd(3_000)}}
        assert inv.post_check(result) == False


class TestForwardOnlyStatus:
    """Test POOL-003: status never moves backward."""

    @pytest.mark.parametrize("before,after", [
        (PoolStatus.ACTIVE, PoolStatus.FUNDED),
        (PoolStatus.FUNDED, PoolStatus.MATURED),
        (PoolStatus.FUNDED, PoolStatus.PAID),
        (PoolStatus.MATURED, PoolStatus.PAID),
        (PoolStatus.PAID, PoolStatus.CLOSED),
        (PoolStatus.ACTIVE, PoolStatus.DEFAULTED),
        (PoolStatus.MATURED, PoolStatus.DEFAULTED),
        (PoolStatus.FUNDED, PoolStatus.FUNDED),
    ])
    def test_allowed_transitions(self, before, after):
        inv = ForwardOnlyStatus()
        result = {'pool': mock_pool(status=after), 'status_before': before}
        assert inv.post_check(result) == True

    @pytest.mark.parametrize("before,after", [
        (PoolStatus.FUNDED, PoolStatus.ACTIVE),
        (PoolStatus.PAID, PoolStatus.MATURED),
        (PoolStatus.CLOSED, PoolStatus.PAID),
        (PoolStatus.PAID, PoolStatus.DEFAULTED),
        (PoolStatus.DEFAULTED, PoolStatus.ACTIVE),
        (PoolStatus.ACTIVE, PoolStatus.PAID),
    ])
    def test_rejected_transitions(self, before, after):
        inv = ForwardOnlyStatus()
        result = {'pool': mock_pool(status=after), 'status_before': before}
        assert inv.post_check(result) == False

    def test_new_pool_must_be_active(self):
        inv = ForwardOnlyStatus()
        assert inv.post_check({'pool': mock_pool(), 'status_before': None}) == True
        assert inv.post_check({'pool': mock_pool(status=PoolStatus.FUNDED), 'status_before': None}) == False

    def test_terminal_states(self):
        assert PoolStatus.CLOSED.is_terminal
        assert PoolStatus.DEFAULTED.is_terminal
        assert not PoolStatus.PAID.is_terminal


class TestDisbursementExactlyOnce:
    """Test POOL-004: disbursed iff target reached, once."""

    def test_not_reached_not_disbursed(self):
        inv = DisbursementExactlyOnce()
        result = {'pool': mock_pool(total_invested=usd(5_000)), 'disbursement_count': 0}
        assert inv.post_check(result) == True

    def test_reached_without_disbursement_fails(self):
        inv = DisbursementExactlyOnce()
        result = {'pool': mock_pool(total_invested=usd(10_000)), 'disbursement_count': 0}
        assert inv.post_check(result) == False

    def test_double_disbursement_fails(self):
        inv = DisbursementExactlyOnce()
        pool = mock_pool(total_invested=usd(10_000), disbursement=object())
        assert inv.post_check({'pool': pool, 'disbursement_count': 1}) == True
        assert inv.post_check({'pool': pool, 'disbursement_count': 2}) == False


class TestFeeSplit:
    """Test POOL-007: floor-then-remainder fee split."""

    def test_one_and_two_percent(self):
        split = compute_fee_split(usd(10_000), DEFAULT_POLICY)
        assert split.platform_fee == usd(100)
        assert split.amc_fee == usd(200)
        assert split.exporter_amount == usd(9_700)

    @pytest.mark.parametrize("target", [1, 99, 12_345, 10_001, 123_456_789, usd(40_000)])
    def test_split_sums_to_target(self, target):
        split = compute_fee_split(target, DEFAULT_POLICY)
        assert split.total() == target
        assert split.platform_fee == target * 100 // 10_000
        assert split.amc_fee == target * 200 // 10_000
        assert split.exporter_amount >= 0

    def test_odd_amount_residue_goes_to_exporter(self):
        split = compute_fee_split(12_345, DEFAULT_POLICY)
        assert (split.exporter_amount, split.platform_fee, split.amc_fee) == (11_976, 123, 246)

    def test_post_check_detects_drift(self):
        inv = FeeSplitConserved()
        bad = SimpleNamespace(split=SimpleNamespace(
            exporter_amount=usd(9_700), platform_fee=usd(100), amc_fee=usd(199),
            total=lambda: usd(9_999)
        ))
        pool = mock_pool(total_invested=usd(10_000), disbursement=bad)
        assert inv.post_check({'pool': pool}) == False


class TestPaymentStatusConsistent:
    """Test POOL-005: payment status follows total paid."""

    def test_partial(self):
        inv = PaymentStatusConsistent()
        pool = mock_pool(total_paid=usd(1), payment_status=PaymentStatus.PARTIAL, status=PoolStatus.FUNDED)
        assert inv.post_check({'pool': pool}) == True

    def test_paid_requires_full(self):
        inv = PaymentStatusConsistent()
        pool = mock_pool(total_paid=usd(1), payment_status=PaymentStatus.PARTIAL, status=PoolStatus.PAID)
        assert inv.post_check({'pool': pool}) == False

# ============================================
# ENFORCEMENT LAYER
# ============================================

class TestEnforcement:
    """Signed decisions and rollback."""

    def test_decisions_are_signed(self, platform, make_pool):
        make_pool()
        ledger = platform.decision_ledger
        assert len(ledger.entries) > 0
        assert ledger.verify_chain_integrity() == True
        assert ledger.health_score() == 1.0

    def test_tampered_decision_detected(self, platform, make_pool):
        make_pool()
        platform.decision_ledger.entries[0].result = False
        assert platform.decision_ledger.verify_chain_integrity() == False
        assert platform.get_system_health()['ledger_integrity'] == False

    def test_unsigned_decision_rejected(self):
        ledger = DecisionLedger()
        from datetime import datetime
        decision = EnforcementDecision("x", "POST", True, EnforcementResult.PROCEED, datetime.now(), "op")
        with pytest.raises(SystemCompromised):
            ledger.record(decision)

    def test_failed_post_check_restores(self):
        """A failing post-check runs restore and raises InvariantViolation."""
        state = {'value': 1}
        restored = []

        def action():
            state['value'] = 2
            return {}

        def restore():
            state['value'] = 1
            restored.append(True)

        enforcer = InvariantEnforcer([AlwaysFails()], DecisionLedger())
        with pytest.raises(InvariantViolation):
            enforcer.enforce_action("test", action, restore=restore)

        assert state['value'] == 1
        assert restored == [True]

    def test_action_exception_restores_and_propagates(self):
        restored = []

        def action():
            raise TransferFailed("rail down")

        enforcer = InvariantEnforcer([], DecisionLedger())
        with pytest.raises(TransferFailed):
            enforcer.enforce_action("test", action, restore=lambda: restored.append(True))
        assert restored == [True]

    def test_circular_dependencies_rejected(self):
        with pytest.raises(InvariantViolation):
            InvariantEnforcer([DependsOn("a", ["b"]), DependsOn("b", ["a"])], DecisionLedger())

    def test_dependency_order(self):
        enforcer = InvariantEnforcer([DependsOn("b", ["a"]), DependsOn("a", [])], DecisionLedger())
        assert [inv.id for inv in enforcer._sorted] == ["a", "b"]

# ============================================
# EXPORTER DIRECTORY
# ============================================

class TestExporterDirectory:

    def test_approve_and_profile(self, platform):
        profile = platform.directory.get_profile("EXP-001")
        assert profile.business_name == "Lagos Cocoa Ltd"
        assert profile.country == "NG"
        assert platform.directory.is_approved("EXP-001")

    def test_unknown_profile(self, platform):
        assert not platform.directory.is_approved("EXP-404")
        with pytest.raises(NotFound):
            platform.directory.get_profile("EXP-404")

    def test_non_admin_cannot_approve(self, platform):
        with pytest.raises(Unauthorized):
            platform.directory.approve("AMC", "EXP-002", "k", "c", "b", "Name", "GH")

    def test_approve_twice_overwrites(self, platform):
        platform.directory.approve("ADMIN", "EXP-001", "k2", "c2", "b2", "Renamed Ltd", "GH")
        assert platform.directory.get_profile("EXP-001").business_name == "Renamed Ltd"
        assert len(platform.directory.list_approved()) == 1

    def test_revoke_blocks_new_receivables(self, platform, clock):
        platform.directory.revoke("ADMIN", "EXP-001")
        assert not platform.directory.is_approved("EXP-001")
        assert platform.directory.list_approved() == []
        with pytest.raises(Unauthorized):
            platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)

# ============================================
# RECEIVABLE LEDGER
# ============================================

class TestReceivableLedger:

    def test_create_pending(self, platform, clock):
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(5_000), clock.now + DAY, "ipfs://x")
        receivable = platform.receivables.get_receivable(rid)
        assert rid.startswith("RCV-")
        assert receivable.status == ReceivableStatus.PENDING_VERIFICATION
        assert receivable.amount_usd == usd(5_000)
        assert platform.events.count("ReceivableCreated") == 1

    def test_unapproved_exporter(self, platform, clock):
        with pytest.raises(Unauthorized):
            platform.receivables.create_receivable("EXP-999", "IMP-001", usd(5_000), clock.now + DAY)

    @pytest.mark.parametrize("amount", [0, -1])
    def test_invalid_amount(self, platform, clock, amount):
        with pytest.raises(InvalidAmount):
            platform.receivables.create_receivable("EXP-001", "IMP-001", amount, clock.now + DAY)

    @pytest.mark.parametrize("offset", [0, -1, -DAY])
    def test_due_date_must_be_future(self, platform, clock, offset):
        with pytest.raises(InvalidDueDate):
            platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1), clock.now + offset)

    def test_verify_once(self, platform, verified_receivable):
        rid = verified_receivable(apr=1500, risk_score=40)
        receivable = platform.receivables.get_receivable(rid)
        assert receivable.status == ReceivableStatus.VERIFIED
        assert (receivable.risk_score, receivable.apr, receivable.verified_by) == (40, 1500, "AMC")

        with pytest.raises(AlreadyVerified):
            platform.receivables.verify_receivable("AMC", rid, 10, 100)
        assert platform.receivables.get_receivable(rid).risk_score == 40

    def test_verify_requires_verifier(self, platform, clock):
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)
        with pytest.raises(Unauthorized):
            platform.receivables.verify_receivable("ADMIN", rid, 10, 100)

    def test_verify_unknown(self, platform):
        with pytest.raises(NotFound):
            platform.receivables.verify_receivable("AMC", "RCV-MISSING", 10, 100)

    @pytest.mark.parametrize("risk,apr", [(101, 100), (-1, 100), (50, -1)])
    def test_verify_rejects_out_of_range(self, platform, clock, risk, apr):
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)
        with pytest.raises(InvalidAmount):
            platform.receivables.verify_receivable("AMC", rid, risk, apr)
        assert platform.receivables.get_receivable(rid).status == ReceivableStatus.PENDING_VERIFICATION

    def test_exporter_index_and_listing(self, platform, clock, verified_receivable):
        verified_receivable()
        platform.receivables.create_receivable("EXP-001", "IMP-002", usd(2_000), clock.now + DAY)

        assert len(platform.receivables.get_exporter_receivables("EXP-001")) == 2
        assert platform.receivables.get_exporter_receivables("EXP-404") == []
        assert len(platform.receivables.list_receivables(ReceivableStatus.VERIFIED)) == 1
        assert len(platform.receivables.list_receivables()) == 2

    def test_failed_create_discards_only_new_receivable(self, platform, clock):
        kept = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)
        platform.receivables.enforcer = InvariantEnforcer([AlwaysFails()], platform.decision_ledger)

        with pytest.raises(InvariantViolation):
            platform.receivables.create_receivable("EXP-001", "IMP-002", usd(2_000), clock.now + DAY)

        assert [r.id for r in platform.receivables.list_receivables()] == [kept]
        assert [r.id for r in platform.receivables.get_exporter_receivables("EXP-001")] == [kept]

    def test_failed_verify_restores_only_that_receivable(self, platform, clock, verified_receivable):
        other = verified_receivable(risk_score=30)
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)
        platform.receivables.enforcer = InvariantEnforcer([AlwaysFails()], platform.decision_ledger)

        with pytest.raises(InvariantViolation):
            platform.receivables.verify_receivable("AMC", rid, 10, 100)

        receivable = platform.receivables.get_receivable(rid)
        assert (receivable.status, receivable.risk_score, receivable.verified_by) == (
            ReceivableStatus.PENDING_VERIFICATION, 0, None
        )
        assert platform.receivables.get_receivable(other).risk_score == 30
        assert len(platform.receivables.list_receivables()) == 2

# ============================================
# CURRENCY AND TOKEN LEDGERS
# ============================================

class TestCurrencyLedger:

    def test_reserved_accounts(self):
        ledger = CurrencyLedger()
        ledger.reserve("TREASURY-X", "")
        assert ledger.is_reserved(escrow_account("POOL-1")) == True
        assert ledger.is_reserved("TREASURY-X") == True
        assert ledger.is_reserved("INV-001") == False
        assert "" not in ledger.reserved

    def test_reverse_drops_only_reversed_legs(self):
        ledger = CurrencyLedger({"A": 100})
        kept = ledger.transfer("A", "B", 10)
        first = ledger.transfer("A", "C", 20)
        second = ledger.transfer("C", "D", 5)

        ledger.reverse([first, second])

        assert ledger.history == [kept]
        assert (ledger.balance_of("A"), ledger.balance_of("B"), ledger.balance_of("C")) == (90, 10, 0)
        assert ledger.balance_of("D") == 0
        assert ledger.total() == 100


class TestClaimTokenLedger:

    def test_only_minter_mints(self):
        ledger = ClaimTokenLedger()
        ledger.bind_minter("ENGINE")
        with pytest.raises(Unauthorized):
            ledger.mint("P", "A", 10, "SOMEONE")
        ledger.mint("P", "A", 10, "ENGINE")
        assert ledger.balance_of("P", "A") == 10

    def test_unbound_ledger_refuses(self):
        with pytest.raises(Unauthorized):
            ClaimTokenLedger().mint("P", "A", 10, "ENGINE")

    def test_rebind_rejected(self):
        ledger = ClaimTokenLedger("ENGINE")
        with pytest.raises(Unauthorized):
            ledger.bind_minter("OTHER")

    def test_burn_beyond_balance(self):
        ledger = ClaimTokenLedger("ENGINE")
        ledger.mint("P", "A", 10, "ENGINE")
        with pytest.raises(InsufficientBalance):
            ledger.burn("P", "A", 11, "ENGINE")
        ledger.burn("P", "A", 10, "ENGINE")
        assert ledger.total_supply("P") == 0
        assert ledger.holders("P") == []

    def test_pools_are_isolated(self):
        ledger = ClaimTokenLedger("ENGINE")
        ledger.mint("P1", "A", 10, "ENGINE")
        ledger.mint("P2", "A", 5, "ENGINE")
        assert ledger.total_supply("P1") == 10
        assert ledger.balance_of("P2", "A") == 5

    def test_engine_ledger_rejects_outside_mint(self, platform, make_pool):
        pool = make_pool()
        with pytest.raises(Unauthorized):
            platform.claims.mint(pool.id, "INV-001", 1, "INV-001")


class TestRewardEmitter:

    def test_reward_ratio(self):
        assert RewardEmitter.reward_for(1_000 * TOKEN_UNIT, usd(2_500), usd(10_000)) == 250 * TOKEN_UNIT

    def test_budget_never_exceeded(self, platform, make_pool, fund):
        pool = make_pool(target=3_000, min_investment=1_000, max_investment=1_000, reward_pool=10)
        fund(1_000, "A", "B", "C")
        for investor in ("A", "B", "C"):
            receipt = platform.engine.invest(pool.id, investor, 1_000)
            assert receipt.reward_tokens == 3

        assert pool.rewards_emitted == 9
        assert pool.rewards_emitted <= pool.reward_pool
        assert platform.rewards.issued_for_pool(pool.id) == 9
        assert platform.rewards.balance_of("A") == 3

# ============================================
# POOL CREATION
# ============================================

class TestPoolCreation:

    def test_create_active_pool(self, platform, make_pool):
        pool = make_pool(reward_pool=500 * TOKEN_UNIT, name="Cocoa Q3", symbol="CQ3")
        assert pool.status == PoolStatus.ACTIVE
        assert pool.pool_type == PoolType.RECEIVABLE
        assert pool.exporter == "EXP-001"
        assert pool.apr == 1200
        assert (pool.name, pool.symbol) == ("Cocoa Q3", "CQ3")
        assert pool.claim_tokens_per_unit == 10 ** 12
        assert platform.engine.get_pool(pool.id) is pool
        assert platform.events.count("PoolCreated", pool.id) == 1

    def test_unverified_receivable(self, platform, clock):
        rid = platform.receivables.create_receivable("EXP-001", "IMP-001", usd(1_000), clock.now + DAY)
        with pytest.raises(WrongState):
            platform.engine.create_pool("AMC", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY)

    def test_one_pool_per_receivable(self, platform, clock, verified_receivable):
        rid = verified_receivable()
        platform.engine.create_pool("AMC", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY)
        with pytest.raises(WrongState):
            platform.engine.create_pool("ADMIN", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY)
        assert len(platform.engine.list_pools()) == 1

    def test_unauthorized_creator(self, platform, clock, verified_receivable):
        rid = verified_receivable()
        with pytest.raises(Unauthorized):
            platform.engine.create_pool("EXP-001", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY)

    def test_unknown_receivable(self, platform, clock):
        with pytest.raises(NotFound):
            platform.engine.create_pool("AMC", "RCV-NOPE", usd(1_000), usd(100), usd(1_000), clock.now + DAY)

    @pytest.mark.parametrize("target,min_inv,max_inv", [
        (0, 1, 1),
        (usd(10_001), usd(100), usd(1_000)),     # above receivable amount
        (usd(1_000), usd(500), usd(100)),        # min above max
        (usd(1_000), 0, usd(100)),
        (usd(1_000), usd(2_000), usd(5_000)),    # min above target
    ])
    def test_invalid_bounds(self, platform, clock, verified_receivable, target, min_inv, max_inv):
        rid = verified_receivable(amount=usd(10_000))
        with pytest.raises(InvalidAmount):
            platform.engine.create_pool("AMC", rid, target, min_inv, max_inv, clock.now + DAY)

    def test_rwa_pools_rejected(self, platform, clock, verified_receivable):
        rid = verified_receivable()
        with pytest.raises(InvalidAmount):
            platform.engine.create_pool("AMC", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY,
                                        pool_type=PoolType.RWA)

    def test_maturity_must_be_future(self, platform, clock, verified_receivable):
        rid = verified_receivable()
        with pytest.raises(InvalidDueDate):
            platform.engine.create_pool("AMC", rid, usd(1_000), usd(100), usd(1_000), clock.now)

    def test_invalid_policy(self, platform, clock, verified_receivable):
        rid = verified_receivable()
        policy = PoolPolicy(9_000, 2_000, "TREASURY-PLATFORM", "TREASURY-AMC")
        with pytest.raises(InvalidAmount):
            platform.engine.create_pool("AMC", rid, usd(1_000), usd(100), usd(1_000), clock.now + DAY,
                                        policy=policy)

    def test_policy_frozen_per_pool(self, platform, make_pool, fund):
        custom = PoolPolicy(500, 500, "TREASURY-PLATFORM", "TREASURY-AMC")
        pool_a = make_pool(policy=custom)
        pool_b = make_pool()
        fund(usd(20_000), "INV-001")

        a = platform.engine.invest(pool_a.id, "INV-001", usd(10_000)).disbursement
        b = platform.engine.invest(pool_b.id, "INV-001", usd(10_000)).disbursement
        assert a.split.exporter_amount == usd(9_000)
        assert b.split.exporter_amount == usd(9_700)

    def test_explicit_apr_override(self, make_pool):
        assert make_pool(apr=900).apr == 900

# ============================================
# SCENARIOS
# ============================================

class TestScenarios:

    def test_scenario_a_single_investor(self, platform, make_pool, fund):
        """$10,000 from one investor funds the pool and pays the exporter $9,700."""
        pool = make_pool(target=usd(10_000), min_investment=usd(100), max_investment=usd(10_000))
        fund(usd(10_000), "INV-001")

        receipt = platform.engine.invest(pool.id, "INV-001", usd(10_000))

        assert receipt.status == PoolStatus.FUNDED
        assert receipt.accepted == usd(10_000)
        assert receipt.disbursement is not None
        assert platform.currency.balance_of("EXP-001") == usd(9_700)
        assert platform.currency.balance_of("TREASURY-PLATFORM") == usd(100)
        assert platform.currency.balance_of("TREASURY-AMC") == usd(200)
        assert platform.currency.balance_of(pool.escrow) == 0
        assert platform.engine.claim_balance(pool.id, "INV-001") == usd(10_000) * 10 ** 12

    def test_scenario_b_multi_investor(self, platform, make_pool, fund):
        """Four $10,000 investors fill a $40,000 pool; disbursement fires once; a fifth is rejected."""
        pool = make_pool(target=usd(40_000), max_investment=usd(10_000))
        investors = ["INV-001", "INV-002", "INV-003", "INV-004"]
        fund(usd(10_000), *investors, "INV-005")

        statuses = [platform.engine.invest(pool.id, inv, usd(10_000)).status for inv in investors]

        assert statuses == [PoolStatus.ACTIVE] * 3 + [PoolStatus.FUNDED]
        assert pool.total_invested == pool.target_amount
        assert platform.events.count("ExporterPaid", pool.id) == 1
        assert platform.currency.balance_of("EXP-001") == usd(38_800)

        for amount in (usd(100), usd(10_000), 1):
            with pytest.raises(CapacityExceeded):
                platform.engine.invest(pool.id, "INV-005", amount)
        assert platform.currency.balance_of("INV-005") == usd(10_000)

    def test_scenario_c_payment_and_distribution(self, platform, make_pool, fund):
        """Full repayment moves to PAID; distribution pays pro rata, burns claims and closes."""
        pool = make_pool(target=usd(40_000), max_investment=usd(10_000))
        investors = ["INV-001", "INV-002", "INV-003", "INV-004"]
        fund(usd(10_000), *investors)
        fund(usd(42_000), "IMP-001")
        for inv in investors:
            platform.engine.invest(pool.id, inv, usd(10_000))

        platform.engine.record_payment("SERVICER", pool.id, usd(42_000), payer="IMP-001")
        assert pool.status == PoolStatus.PAID
        assert pool.payment_status == PaymentStatus.FULL

        distribution = platform.engine.distribute_yield(pool.id)

        assert pool.status == PoolStatus.CLOSED
        assert all(payout == usd(10_500) for payout in distribution.payouts.values())
        assert distribution.remainder == 0
        assert platform.claims.total_supply(pool.id) == 0
        for inv in investors:
            assert platform.engine.claim_balance(pool.id, inv) == 0
            assert platform.currency.balance_of(inv) == usd(10_500)
        assert platform.currency.balance_of(pool.escrow) == 0
        assert platform.engine.get_distribution(pool.id) is distribution

    def test_scenario_d_premature_operations(self, platform, make_pool, fund):
        """Payment on ACTIVE and distribution on FUNDED are WrongState."""
        active = make_pool()
        with pytest.raises(WrongState):
            platform.engine.record_payment("ADMIN", active.id, usd(1_000))

        funded = make_pool()
        fund(usd(10_000), "INV-001")
        platform.engine.invest(funded.id, "INV-001", usd(10_000))
        with pytest.raises(WrongState):
            platform.engine.distribute_yield(funded.id)
        assert funded.status == PoolStatus.FUNDED

# ============================================
# INVESTMENT RULES
# ============================================

class TestInvestment:

    def test_clipping_to_allowance_and_capacity(self, platform, make_pool, fund):
        pool = make_pool(target=usd(10_000), max_investment=usd(6_000))
        fund(usd(10_000), "INV-001", "INV-002")

        first = platform.engine.invest(pool.id, "INV-001", usd(8_000))
        second = platform.engine.invest(pool.id, "INV-002", usd(10_000))

        assert (first.requested, first.accepted) == (usd(8_000), usd(6_000))
        assert (second.accepted, second.status) == (usd(4_000), PoolStatus.FUNDED)
        assert platform.currency.balance_of("INV-001") == usd(4_000)
        assert platform.engine.get_investment(pool.id, "INV-002") == usd(4_000)
        assert platform.engine.get_investors(pool.id) == ["INV-001", "INV-002"]

    def test_clipped_below_minimum(self, platform, make_pool, fund):
        pool = make_pool(target=usd(10_000), min_investment=usd(1_000))
        fund(usd(10_000), "INV-001", "INV-002")
        platform.engine.invest(pool.id, "INV-001", usd(9_500))

        with pytest.raises(BelowMinimum):
            platform.engine.invest(pool.id, "INV-002", usd(1_000))
        assert pool.total_invested == usd(9_500)
        assert platform.currency.balance_of("INV-002") == usd(10_000)

    def test_request_below_minimum(self, platform, make_pool, fund):
        pool = make_pool(min_investment=usd(100))
        fund(usd(100), "INV-001")
        with pytest.raises(BelowMinimum):
            platform.engine.invest(pool.id, "INV-001", usd(99))

    def test_investor_cap_reached(self, platform, make_pool, fund):
        pool = make_pool(target=usd(10_000), max_investment=usd(5_000))
        fund(usd(10_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(5_000))
        with pytest.raises(CapacityExceeded):
            platform.engine.invest(pool.id, "INV-001", usd(100))
        assert platform.engine.get_investment(pool.id, "INV-001") == usd(5_000)

    def test_repeat_investor_accumulates(self, platform, make_pool, fund):
        pool = make_pool(target=usd(10_000), max_investment=usd(10_000))
        fund(usd(10_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(3_000))
        receipt = platform.engine.invest(pool.id, "INV-001", usd(7_000))
        assert receipt.status == PoolStatus.FUNDED
        assert platform.events.count("ExporterPaid", pool.id) == 1

    @pytest.mark.parametrize("amount", [0, -usd(1)])
    def test_non_positive_amount(self, platform, make_pool, amount):
        pool = make_pool()
        with pytest.raises(InvalidAmount):
            platform.engine.invest(pool.id, "INV-001", amount)

    def test_unknown_pool(self, platform):
        with pytest.raises(NotFound):
            platform.engine.invest("POOL-NOPE", "INV-001", usd(100))

    def test_insufficient_investor_funds(self, platform, make_pool):
        pool = make_pool()
        with pytest.raises(TransferFailed):
            platform.engine.invest(pool.id, "INV-BROKE", usd(500))
        assert pool.total_invested == 0
        assert platform.claims.total_supply(pool.id) == 0
        assert platform.engine.get_investors(pool.id) == []

    def test_own_escrow_cannot_invest(self, platform, make_pool, fund):
        """Escrow money must never count as fresh capital."""
        pool = make_pool(target=usd(10_000))
        fund(usd(5_000), "INV-001")
        fund(usd(1_000), "INV-002")
        platform.engine.invest(pool.id, "INV-001", usd(5_000))

        with pytest.raises(Unauthorized):
            platform.engine.invest(pool.id, pool.escrow, usd(4_000))
        assert pool.total_invested == usd(5_000)
        assert platform.claims.balance_of(pool.id, pool.escrow) == 0
        assert platform.engine.get_investors(pool.id) == ["INV-001"]

        fund(usd(4_000), "INV-003")
        platform.engine.invest(pool.id, "INV-003", usd(4_000))
        receipt = platform.engine.invest(pool.id, "INV-002", usd(1_000))
        assert receipt.status == PoolStatus.FUNDED
        assert platform.currency.balance_of(pool.escrow) == 0

    @pytest.mark.parametrize("account", ["other_escrow", settings.platform_treasury, settings.amc_treasury])
    def test_platform_accounts_cannot_invest(self, platform, make_pool, fund, account):
        pool = make_pool()
        if account == "other_escrow":
            account = make_pool().escrow
        fund(usd(1_000), account)

        with pytest.raises(Unauthorized):
            platform.engine.invest(pool.id, account, usd(1_000))
        assert pool.total_invested == 0
        assert platform.currency.balance_of(account) == usd(1_000)

# ============================================
# ATOMICITY
# ============================================

class TestAtomicDisbursement:

    def test_failed_leg_rolls_back_everything(self, platform, make_pool, fund):
        """If the AMC leg cannot complete, the pool stays ACTIVE and nothing moved."""
        pool = make_pool(target=usd(10_000), reward_pool=100 * TOKEN_UNIT)
        fund(usd(10_000), "INV-001")
        platform.currency.block("TREASURY-AMC")

        with pytest.raises(TransferFailed):
            platform.engine.invest(pool.id, "INV-001", usd(10_000))

        assert pool.status == PoolStatus.ACTIVE
        assert pool.total_invested == 0
        assert pool.disbursement is None
        assert pool.rewards_emitted == 0
        assert platform.engine.get_investment(pool.id, "INV-001") == 0
        assert platform.claims.total_supply(pool.id) == 0
        assert platform.rewards.balance_of("INV-001") == 0
        assert platform.currency.balance_of("INV-001") == usd(10_000)
        assert platform.currency.balance_of("EXP-001") == 0
        assert platform.currency.balance_of("TREASURY-PLATFORM") == 0
        assert platform.currency.balance_of(pool.escrow) == 0
        assert platform.events.count("InvestmentMade", pool.id) == 0

        platform.currency.unblock("TREASURY-AMC")
        receipt = platform.engine.invest(pool.id, "INV-001", usd(10_000))
        assert receipt.status == PoolStatus.FUNDED
        assert platform.currency.balance_of("EXP-001") == usd(9_700)
        assert platform.events.count("ExporterPaid", pool.id) == 1

    def test_failed_distribution_leg_rolls_back(self, platform, make_pool, fund):
        pool = make_pool()
        fund(usd(10_000), "INV-001")
        fund(usd(10_500), "IMP-001")
        platform.engine.invest(pool.id, "INV-001", usd(10_000))
        platform.engine.record_payment("ADMIN", pool.id, usd(10_500), payer="IMP-001")
        platform.currency.block("INV-001")

        with pytest.raises(TransferFailed):
            platform.engine.distribute_yield(pool.id)

        assert pool.status == PoolStatus.PAID
        assert pool.distribution is None
        assert platform.engine.claim_balance(pool.id, "INV-001") == usd(10_000) * 10 ** 12
        assert platform.currency.balance_of(pool.escrow) == usd(10_500)

# ============================================
# LIFECYCLE
# ============================================

class TestLifecycle:

    def _funded(self, platform, make_pool, fund):
        pool = make_pool()
        fund(usd(10_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(10_000))
        return pool

    def test_update_maturity(self, platform, make_pool, fund, clock):
        active = make_pool()
        assert platform.engine.update_maturity(active.id) == PoolStatus.ACTIVE

        pool = self._funded(platform, make_pool, fund)
        assert platform.engine.update_maturity(pool.id) == PoolStatus.FUNDED

        clock.advance(30 * DAY)
        assert platform.engine.update_maturity(pool.id) == PoolStatus.MATURED
        assert platform.engine.update_maturity(pool.id) == PoolStatus.MATURED
        assert platform.events.count("PoolMatured", pool.id) == 1

    def test_update_maturity_unknown(self, platform):
        with pytest.raises(NotFound):
            platform.engine.update_maturity("POOL-NOPE")

    def test_partial_then_full_payment(self, platform, make_pool, fund, clock):
        pool = self._funded(platform, make_pool, fund)
        clock.advance(31 * DAY)
        platform.engine.update_maturity(pool.id)
        fund(usd(11_000), "IMP-001")

        platform.engine.record_payment("SERVICER", pool.id, usd(4_000), payer="IMP-001")
        assert (pool.status, pool.payment_status) == (PoolStatus.MATURED, PaymentStatus.PARTIAL)

        platform.engine.record_payment("SERVICER", pool.id, usd(7_000), payer="IMP-001")
        assert (pool.status, pool.payment_status) == (PoolStatus.PAID, PaymentStatus.FULL)
        assert pool.total_paid == usd(11_000)

        with pytest.raises(WrongState):
            platform.engine.record_payment("SERVICER", pool.id, usd(1), payer="IMP-001")

    def test_payment_requires_role(self, platform, make_pool, fund):
        pool = self._funded(platform, make_pool, fund)
        fund(usd(10_000), "INV-001")
        with pytest.raises(Unauthorized):
            platform.engine.record_payment("INV-001", pool.id, usd(10_000))
        assert pool.total_paid == 0

    def test_payment_from_unfunded_payer(self, platform, make_pool, fund):
        pool = self._funded(platform, make_pool, fund)
        with pytest.raises(TransferFailed):
            platform.engine.record_payment("ADMIN", pool.id, usd(10_000), payer="IMP-EMPTY")
        assert (pool.total_paid, pool.payment_status) == (0, PaymentStatus.NONE)

    def test_payment_cannot_drain_another_escrow(self, platform, make_pool, fund):
        """Pools are independent: one pool's repayment cannot fund another."""
        paid = self._funded(platform, make_pool, fund)
        fund(usd(10_500), "IMP-001")
        platform.engine.record_payment("SERVICER", paid.id, usd(10_500), payer="IMP-001")

        other = make_pool()
        fund(usd(10_000), "INV-002")
        platform.engine.invest(other.id, "INV-002", usd(10_000))

        with pytest.raises(Unauthorized):
            platform.engine.record_payment("SERVICER", other.id, usd(10_000), payer=paid.escrow)
        assert other.total_paid == 0
        assert platform.currency.balance_of(paid.escrow) == usd(10_500)

        distribution = platform.engine.distribute_yield(paid.id)
        assert distribution.payouts == {"INV-001": usd(10_500)}
        assert paid.status == PoolStatus.CLOSED

    def test_treasury_cannot_pay(self, platform, make_pool, fund):
        pool = self._funded(platform, make_pool, fund)
        with pytest.raises(Unauthorized):
            platform.engine.record_payment("ADMIN", pool.id, usd(100), payer=pool.policy.platform_treasury)
        assert pool.total_paid == 0

    def test_rounding_remainder_swept(self, platform, make_pool, fund):
        """Uneven holdings leave a 1 micro-unit remainder that goes to the platform treasury."""
        pool = make_pool(target=1_000, min_investment=1, max_investment=1_000)
        fund(334, "A", "B", "C")
        fund(1_001, "IMP-001")
        platform.engine.invest(pool.id, "A", 333)
        platform.engine.invest(pool.id, "B", 333)
        platform.engine.invest(pool.id, "C", 334)
        assert platform.currency.balance_of("TREASURY-PLATFORM") == 10

        platform.engine.record_payment("ADMIN", pool.id, 1_001, payer="IMP-001")
        distribution = platform.engine.distribute_yield(pool.id)

        assert dict(distribution.payouts) == {"A": 333, "B": 333, "C": 334}
        assert distribution.remainder == 1
        assert distribution.total_paid_out() + distribution.remainder == pool.total_paid
        assert platform.currency.balance_of("TREASURY-PLATFORM") == 11
        assert platform.currency.balance_of(pool.escrow) == 0

    def test_forward_only_status_history(self, platform, make_pool, fund, clock):
        pool = self._funded(platform, make_pool, fund)
        clock.advance(30 * DAY)
        platform.engine.update_maturity(pool.id)
        fund(usd(10_300), "IMP-001")
        platform.engine.record_payment("ADMIN", pool.id, usd(10_300), payer="IMP-001")
        platform.engine.distribute_yield(pool.id)

        observed = [PoolStatus[e.status].value for e in platform.events.for_pool(pool.id)]
        assert observed == sorted(observed)
        assert observed[-1] == PoolStatus.CLOSED.value

    def test_closed_pool_rejects_everything(self, platform, make_pool, fund):
        pool = self._funded(platform, make_pool, fund)
        fund(usd(10_000), "IMP-001")
        platform.engine.record_payment("ADMIN", pool.id, usd(10_000), payer="IMP-001")
        platform.engine.distribute_yield(pool.id)

        with pytest.raises(WrongState):
            platform.engine.distribute_yield(pool.id)
        with pytest.raises(WrongState):
            platform.engine.mark_defaulted("ADMIN", pool.id)
        with pytest.raises(CapacityExceeded):
            platform.engine.invest(pool.id, "INV-002", usd(100))
        # Investment history is kept after close
        assert platform.engine.get_investment(pool.id, "INV-001") == usd(10_000)


class TestDefault:

    def test_default_from_active(self, platform, make_pool, fund):
        pool = make_pool()
        fund(usd(1_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(1_000))

        platform.engine.mark_defaulted("ADMIN", pool.id)
        assert pool.status == PoolStatus.DEFAULTED
        with pytest.raises(WrongState):
            platform.engine.invest(pool.id, "INV-001", usd(1_000))
        with pytest.raises(WrongState):
            platform.engine.mark_defaulted("ADMIN", pool.id)

    def test_default_requires_admin(self, platform, make_pool):
        pool = make_pool()
        with pytest.raises(Unauthorized):
            platform.engine.mark_defaulted("AMC", pool.id)
        assert pool.status == PoolStatus.ACTIVE

    def test_default_from_matured(self, platform, make_pool, fund, clock):
        pool = make_pool()
        fund(usd(10_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(10_000))
        clock.advance(30 * DAY)
        platform.engine.update_maturity(pool.id)

        platform.engine.mark_defaulted("ADMIN", pool.id)
        assert pool.status == PoolStatus.DEFAULTED
        with pytest.raises(WrongState):
            platform.engine.record_payment("ADMIN", pool.id, usd(1))

    def test_paid_pool_cannot_default(self, platform, make_pool, fund):
        pool = make_pool()
        fund(usd(10_000), "INV-001", "IMP-001")
        platform.engine.invest(pool.id, "INV-001", usd(10_000))
        platform.engine.record_payment("ADMIN", pool.id, usd(10_000), payer="IMP-001")
        with pytest.raises(WrongState):
            platform.engine.mark_defaulted("ADMIN", pool.id)

# ============================================
# EVENTS
# ============================================

class TestEvents:

    def test_event_deltas(self, platform, make_pool, fund):
        pool = make_pool()
        fund(usd(10_000), "INV-001")
        platform.engine.invest(pool.id, "INV-001", usd(10_000))

        paid = [e for e in platform.events.for_pool(pool.id) if e.operation == "ExporterPaid"][0]
        assert paid.status == "FUNDED"
        assert paid.deltas == {'exporter_amount': usd(9_700), 'platform_fee': usd(100), 'amc_fee': usd(200)}

    def test_events_are_signed(self, platform, make_pool):
        make_pool()
        platform.events.verify_integrity()
        platform.events.events[-1].deltas['target_amount'] = 1
        with pytest.raises(SystemCompromised):
            platform.events.verify_integrity()

    def test_forged_signature_rejected(self, platform, make_pool):
        make_pool()
        event = platform.events.events[-1]
        assert event.verify_signature() == True
        event.signature = "forged"
        assert event.verify_signature() == False

    def test_failing_observer_does_not_affect_operation(self, platform, make_pool, fund):
        seen = []

        def broken(event):
            raise RuntimeError("indexer offline")

        platform.events.subscribe(broken)
        platform.events.subscribe(seen.append)

        pool = make_pool()
        fund(usd(10_000), "INV-001")
        receipt = platform.engine.invest(pool.id, "INV-001", usd(10_000))

        assert receipt.status == PoolStatus.FUNDED
        assert [e.operation for e in seen][-2:] == ["InvestmentMade", "ExporterPaid"]


class TestEndToEndFlows:

    def test_complete_flow(self, platform, fund):
        investors = {"INV-001": usd(10_000), "INV-002": usd(10_000)}
        fund(usd(10_000), *investors)
        fund(usd(21_000), "IMP-001")

        pool, distribution = platform.execute_complete_flow(
            admin="ADMIN",
            verifier="AMC",
            exporter="EXP-002",
            importer="IMP-001",
            amount=usd(20_000),
            investors=investors,
            repayment=usd(21_000),
            max_investment=usd(10_000)
        )

        assert pool.status == PoolStatus.CLOSED
        assert dict(distribution.payouts) == {"INV-001": usd(10_500), "INV-002": usd(10_500)}
        health = platform.get_system_health()
        assert health['ledger_integrity'] == True
        assert health['event_integrity'] == True
        assert health['failed_checks'] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
