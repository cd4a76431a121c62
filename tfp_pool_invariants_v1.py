"""
TradeFlow Pools (TFP) - Pool and Receivable Invariants
Version: 1.0.0

Concrete invariants checked by InvariantEnforcer after every receivable and
pool operation. Post-checks receive the action's result dict:

    receivable ops: {'receivable', 'storage'}
    pool ops:       {'pool', 'status_before', 'investments', 'claim_supply',
                     'escrow_balance', 'disbursement_count'}
"""

from typing import Any, Dict

from tfp_config import BPS_DENOMINATOR
from tfp_enforcement_v1 import Criticality, Invariant, InvariantType, logger

# ============================================
# RECEIVABLE INVARIANTS
# ============================================

class UniqueReceivableIds(Invariant):
    """RCV-001: Every receivable identifier is stored exactly once."""

    def __init__(self):
        super().__init__(
            id="rcv_001_unique_ids",
            statement="Every receivable identifier maps to exactly one record",
            type=InvariantType.STATE,
            criticality=Criticality.CRITICAL,
            dependencies=[],
            owner="receivable_ledger"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        receivable = result['receivable']
        count = result['storage'].count(receivable.id)
        logger.info(f"POST-CHECK {self.id}: receivable={receivable.id}, count={count}")
        return count == 1


class ValidReceivableTerms(Invariant):
    """RCV-002: Amount positive, due date set."""

    def __init__(self):
        super().__init__(
            id="rcv_002_valid_terms",
            statement="A receivable has a positive amount and a due date",
            type=InvariantType.STATE,
            criticality=Criticality.CRITICAL,
            dependencies=["rcv_001_unique_ids"],
            owner="receivable_ledger"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        receivable = result['receivable']
        return receivable.amount_usd > 0 and receivable.due_date > 0


class VerificationComplete(Invariant):
    """RCV-003: A VERIFIED receivable carries a risk score, an APR and its verifier."""

    def __init__(self):
        super().__init__(
            id="rcv_003_verification_complete",
            statement="Verification sets risk score (0-100), APR (>= 0) and verifier together",
            type=InvariantType.TRANSITION,
            criticality=Criticality.IMPORTANT,
            dependencies=["rcv_001_unique_ids"],
            owner="receivable_ledger"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        r = result['receivable']
        if r.status.name != "VERIFIED":
            return r.verified_by is None
        return 0 <= r.risk_score <= 100 and r.apr >= 0 and r.verified_by is not None

# ============================================
# POOL INVARIANTS
# ============================================

class InvestedWithinTarget(Invariant):
    """POOL-001: 0 <= totalInvested <= targetAmount."""

    def __init__(self):
        super().__init__(
            id="pool_001_invested_within_target",
            statement="Total invested never exceeds the pool target",
            type=InvariantType.FINANCIAL,
            criticality=Criticality.CRITICAL,
            dependencies=[],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        valid = 0 <= pool.total_invested <= pool.target_amount
        logger.info(
            f"POST-CHECK {self.id}: pool={pool.id}, invested={pool.total_invested}, "
            f"target={pool.target_amount}, valid={valid}"
        )
        return valid


class InvestorCapRespected(Invariant):
    """POOL-002: No investor exceeds maxInvestment."""

    def __init__(self):
        super().__init__(
            id="pool_002_investor_cap",
            statement="Every investor's cumulative investment is at most the per-investor cap",
            type=InvariantType.FINANCIAL,
            criticality=Criticality.CRITICAL,
            dependencies=["pool_001_invested_within_target"],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        investments = result['investments']
        return (
            all(amount <= pool.max_investment for amount in investments.values()) and
            sum(investments.values()) == pool.total_invested
        )


class ForwardOnlyStatus(Invariant):
    """POOL-003: ACTIVE -> FUNDED -> MATURED -> PAID -> CLOSED, DEFAULTED as terminal branch."""

    def __init__(self):
        super().__init__(
            id="pool_003_forward_only_status",
            statement="Pool status never moves backward",
            type=InvariantType.TRANSITION,
            criticality=Criticality.CRITICAL,
            dependencies=[],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        before = result['status_before']
        after = result['pool'].status

        if before is None:
            valid = after.name == "ACTIVE"
        else:
            valid = after == before or after in before.successors()

        logger.info(f"POST-CHECK {self.id}: {before.name if before else '-'} -> {after.name}, valid={valid}")
        return valid


class DisbursementExactlyOnce(Invariant):
    """POOL-004: Disbursed iff the target was reached, and never twice."""

    def __init__(self):
        super().__init__(
            id="pool_004_disbursement_once",
            statement="The exporter is paid exactly once, when total invested reaches target",
            type=InvariantType.STATE,
            criticality=Criticality.CRITICAL,
            dependencies=["pool_001_invested_within_target"],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        reached = pool.total_invested == pool.target_amount
        disbursed = pool.disbursement is not None
        count = result['disbursement_count']

        logger.info(f"POST-CHECK {self.id}: pool={pool.id}, reached={reached}, disbursements={count}")
        return disbursed == reached and count == (1 if disbursed else 0)


class FeeSplitConserved(Invariant):
    """POOL-007: exporter + platform fee + AMC fee == target, no residue."""

    def __init__(self):
        super().__init__(
            id="pool_007_fee_split_conserved",
            statement="The disbursement split sums exactly to the target amount",
            type=InvariantType.FINANCIAL,
            criticality=Criticality.CRITICAL,
            dependencies=["pool_004_disbursement_once"],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        if pool.disbursement is None:
            return True

        split = pool.disbursement.split
        policy = pool.policy
        return (
            split.total() == pool.target_amount and
            min(split.exporter_amount, split.platform_fee, split.amc_fee) >= 0 and
            split.platform_fee == pool.target_amount * policy.platform_fee_bps // BPS_DENOMINATOR and
            split.amc_fee == pool.target_amount * policy.amc_fee_bps // BPS_DENOMINATOR
        )


class PaymentStatusConsistent(Invariant):
    """POOL-005: paymentStatus follows totalPaid; PAID/CLOSED only once FULL."""

    def __init__(self):
        super().__init__(
            id="pool_005_payment_status",
            statement="Payment status reflects cumulative payments against target",
            type=InvariantType.STATE,
            criticality=Criticality.IMPORTANT,
            dependencies=[],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        if pool.total_paid == 0:
            expected = "NONE"
        elif pool.total_paid >= pool.target_amount:
            expected = "FULL"
        else:
            expected = "PARTIAL"

        if pool.payment_status.name != expected:
            return False
        if pool.status.name in ("PAID", "CLOSED"):
            return expected == "FULL"
        return True


class DistributionComplete(Invariant):
    """POOL-006: A CLOSED pool has no claim supply, empty escrow, and payouts summing to totalPaid."""

    def __init__(self):
        super().__init__(
            id="pool_006_distribution_complete",
            statement="Closing a pool burns every claim token and empties its escrow",
            type=InvariantType.FINANCIAL,
            criticality=Criticality.CRITICAL,
            dependencies=["pool_005_payment_status"],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        if pool.status.name != "CLOSED":
            return True

        distribution = pool.distribution
        valid = (
            distribution is not None and
            result['claim_supply'] == 0 and
            result['escrow_balance'] == 0 and
            distribution.total_paid_out() + distribution.remainder == pool.total_paid
        )
        logger.info(f"POST-CHECK {self.id}: pool={pool.id}, valid={valid}")
        return valid


class ClaimSupplyMatchesCapital(Invariant):
    """POOL-008: Until close, claim supply == totalInvested scaled to token units."""

    def __init__(self):
        super().__init__(
            id="pool_008_claim_supply",
            statement="Outstanding claim tokens equal invested capital at the pool's fixed price",
            type=InvariantType.FINANCIAL,
            criticality=Criticality.CRITICAL,
            dependencies=["pool_001_invested_within_target"],
            owner="pool_engine"
        )

    def post_check(self, result: Dict[str, Any]) -> bool:
        pool = result['pool']
        if pool.status.name == "CLOSED":
            return True
        return result['claim_supply'] == pool.total_invested * pool.claim_tokens_per_unit


def receivable_invariants():
    return [UniqueReceivableIds(), ValidReceivableTerms(), VerificationComplete()]


def pool_invariants():
    return [
        InvestedWithinTarget(),
        InvestorCapRespected(),
        ForwardOnlyStatus(),
        DisbursementExactlyOnce(),
        FeeSplitConserved(),
        PaymentStatusConsistent(),
        DistributionComplete(),
        ClaimSupplyMatchesCapital(),
    ]
