"""
TradeFlow Pools (TFP) - Pool Settlement Engine
Version: 1.0.0

Financing pools bound 1:1 to verified receivables. The engine accepts capital
against per-investor and aggregate caps, pays the exporter exactly once in the
same call that reaches the target, records repayment, and distributes repaid
funds to claim-token holders while burning their tokens.

Every operation:
    1. takes the pool's lock
    2. validates inputs and state (domain errors, no state touched)
    3. runs the mutation inside InvariantEnforcer with a restore callback
    4. emits its event only after the enforcer has committed

Amounts: settlement currency in micro-units (10^6), tokens in 10^18 units,
rates in bps, times in unix seconds.
"""

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import functools
import threading
import time
import uuid

from tfp_access_control_v1 import AccessPolicy, Role
from tfp_balances_v1 import CurrencyLedger, TransferLeg, escrow_account
from tfp_config import (
    BPS_DENOMINATOR,
    CLAIM_TOKENS_PER_CURRENCY_UNIT,
    PoolPolicy,
    format_usd,
    settings
)
from tfp_enforcement_v1 import (
    AlreadyDisbursed,
    BelowMinimum,
    CapacityExceeded,
    DecisionLedger,
    InvalidAmount,
    InvalidDueDate,
    InvariantEnforcer,
    NotFound,
    TradeFlowError,
    Unauthorized,
    WrongState,
    logger
)
from tfp_metrics import (
    disbursement_counter,
    distribution_counter,
    payment_counter,
    pool_created_counter,
    record_investment,
    record_rejection,
    record_transition,
    release_committed_capital
)
from tfp_pool_events_v1 import EventLog
from tfp_pool_invariants_v1 import pool_invariants
from tfp_receivable_ledger_v1 import ReceivableLedger, ReceivableStatus
from tfp_token_ledgers_v1 import ClaimTokenLedger, RewardEmitter, RewardTokenLedger

ENGINE_ID = "POOL_ENGINE"

# ============================================
# ENUMS
# ============================================

class PoolType(Enum):
    RWA = 0
    RECEIVABLE = 1

class PoolStatus(Enum):
    ACTIVE = 0
    FUNDED = 1
    MATURED = 2
    PAID = 3
    DEFAULTED = 4
    CLOSED = 5

    def successors(self) -> frozenset:
        """Statuses reachable in one forward step."""
        return _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

_TRANSITIONS = {
    PoolStatus.ACTIVE: frozenset({PoolStatus.FUNDED, PoolStatus.DEFAULTED}),
    PoolStatus.FUNDED: frozenset({PoolStatus.MATURED, PoolStatus.PAID, PoolStatus.DEFAULTED}),
    PoolStatus.MATURED: frozenset({PoolStatus.PAID, PoolStatus.DEFAULTED}),
    PoolStatus.PAID: frozenset({PoolStatus.CLOSED}),
    PoolStatus.CLOSED: frozenset(),
    PoolStatus.DEFAULTED: frozenset(),
}

class PaymentStatus(Enum):
    NONE = 0
    PARTIAL = 1
    FULL = 2

# ============================================
# DATA MODELS
# ============================================

@dataclass(frozen=True)
class FeeSplit:
    exporter_amount: int
    platform_fee: int
    amc_fee: int

    def total(self) -> int:
        return self.exporter_amount + self.platform_fee + self.amc_fee

    def to_dict(self) -> Dict:
        return {
            'exporter_amount': self.exporter_amount,
            'platform_fee': self.platform_fee,
            'amc_fee': self.amc_fee
        }


def compute_fee_split(target_amount: int, policy: PoolPolicy) -> FeeSplit:
    """Floor both fees, exporter takes the remainder, so the parts sum to target."""
    platform_fee = target_amount * policy.platform_fee_bps // BPS_DENOMINATOR
    amc_fee = target_amount * policy.amc_fee_bps // BPS_DENOMINATOR
    return FeeSplit(
        exporter_amount=target_amount - platform_fee - amc_fee,
        platform_fee=platform_fee,
        amc_fee=amc_fee
    )


@dataclass
class Disbursement:
    pool_id: str
    exporter: str
    split: FeeSplit
    legs: List[TransferLeg]
    executed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            'pool_id': self.pool_id,
            'exporter': self.exporter,
            **self.split.to_dict(),
            'executed_at': self.executed_at.isoformat()
        }


@dataclass
class Distribution:
    pool_id: str
    total_paid: int
    claim_supply: int
    payouts: "OrderedDict[str, int]"
    remainder: int
    executed_at: datetime = field(default_factory=datetime.now)

    def total_paid_out(self) -> int:
        return sum(self.payouts.values())

    def to_dict(self) -> Dict:
        return {
            'pool_id': self.pool_id,
            'total_paid': self.total_paid,
            'claim_supply': str(self.claim_supply),
            'payouts': dict(self.payouts),
            'remainder': self.remainder,
            'executed_at': self.executed_at.isoformat()
        }


@dataclass
class InvestmentReceipt:
    pool_id: str
    investor: str
    requested: int
    accepted: int
    claim_tokens: int
    reward_tokens: int
    total_invested: int
    status: PoolStatus
    disbursement: Optional[Disbursement] = None

    def to_dict(self) -> Dict:
        return {
            'pool_id': self.pool_id,
            'investor': self.investor,
            'requested': self.requested,
            'accepted': self.accepted,
            'claim_tokens': str(self.claim_tokens),
            'reward_tokens': str(self.reward_tokens),
            'total_invested': self.total_invested,
            'status': self.status.name,
            'disbursement': self.disbursement.to_dict() if self.disbursement else None
        }


@dataclass
class Pool:
    """Financing pool. Only totals, status and settlement records change after creation."""
    id: str
    pool_type: PoolType
    receivable_id: str
    exporter: str
    target_amount: int
    min_investment: int
    max_investment: int
    apr: int
    maturity_date: int
    reward_pool: int
    name: str
    symbol: str
    policy: PoolPolicy
    claim_tokens_per_unit: int = CLAIM_TOKENS_PER_CURRENCY_UNIT

    total_invested: int = 0
    total_paid: int = 0
    rewards_emitted: int = 0
    payment_status: PaymentStatus = PaymentStatus.NONE
    status: PoolStatus = PoolStatus.ACTIVE

    disbursement: Optional[Disbursement] = None
    distribution: Optional[Distribution] = None

    created_at: datetime = field(default_factory=datetime.now)
    created_by: Optional[str] = None

    @property
    def escrow(self) -> str:
        return escrow_account(self.id)

    @property
    def remaining_capacity(self) -> int:
        return self.target_amount - self.total_invested

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'pool_type': self.pool_type.name,
            'receivable_id': self.receivable_id,
            'exporter': self.exporter,
            'target_amount': self.target_amount,
            'min_investment': self.min_investment,
            'max_investment': self.max_investment,
            'apr': self.apr,
            'maturity_date': self.maturity_date,
            'reward_pool': str(self.reward_pool),
            'name': self.name,
            'symbol': self.symbol,
            'platform_fee_bps': self.policy.platform_fee_bps,
            'amc_fee_bps': self.policy.amc_fee_bps,
            'total_invested': self.total_invested,
            'total_paid': self.total_paid,
            'rewards_emitted': str(self.rewards_emitted),
            'payment_status': self.payment_status.name,
            'status': self.status.name,
            'disbursement': self.disbursement.to_dict() if self.disbursement else None,
            'created_at': self.created_at.isoformat()
        }

# ============================================
# HELPERS
# ============================================

def _tracked(operation: str):
    """Count and log domain rejections; the error still reaches the caller."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except TradeFlowError as e:
                record_rejection(operation, e.code)
                logger.warning(f"[POOL_ENGINE] {operation} rejected: {e.code}: {e}")
                raise
        return wrapper
    return decorator

# ============================================
# POOL SETTLEMENT ENGINE
# ============================================

class PoolSettlementEngine:
    """Pool lifecycle with invariant enforcement and per-pool serialization."""

    def __init__(
        self,
        receivables: ReceivableLedger,
        access: AccessPolicy,
        decision_ledger: DecisionLedger,
        currency: CurrencyLedger,
        claims: Optional[ClaimTokenLedger] = None,
        rewards: Optional[RewardEmitter] = None,
        events: Optional[EventLog] = None,
        policy: Optional[PoolPolicy] = None,
        now_fn: Callable[[], int] = None
    ):
        self.receivables = receivables
        self.access = access
        self.currency = currency
        self.claims = claims or ClaimTokenLedger()
        self.rewards = rewards or RewardEmitter(RewardTokenLedger())
        self.events = events or receivables.events
        self.policy = policy or settings.pool_policy()
        self.now_fn = now_fn or (lambda: int(time.time()))

        self.claims.bind_minter(ENGINE_ID)
        self.currency.reserve(self.policy.platform_treasury, self.policy.amc_treasury)

        self.pools: Dict[str, Pool] = {}
        self.investments: Dict[str, "OrderedDict[str, int]"] = {}
        self.pool_by_receivable: Dict[str, str] = {}
        self._disbursements: Dict[str, int] = {}

        self._pool_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        self.invariants = pool_invariants()
        self.enforcer = InvariantEnforcer(self.invariants, decision_ledger)

        logger.info(f"[POOL_ENGINE] Initialized with {len(self.invariants)} invariants")

    # ----------------------------------------
    # Unit of work
    # ----------------------------------------

    def _lock_for(self, pool_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._pool_locks.get(pool_id)
        if lock is None:
            raise NotFound(f"Pool {pool_id} not found")
        return lock

    def _require_external(self, account: str, role: str):
        if self.currency.is_reserved(account):
            logger.error(f"[POOL_ENGINE] AUTHORIZATION VIOLATION: platform account {account} used as {role}")
            raise Unauthorized(f"Platform account {account} cannot act as {role}")

    def _result(self, pool: Pool, status_before: Optional[PoolStatus], **extra) -> Dict[str, Any]:
        return {
            'pool': pool,
            'status_before': status_before,
            'investments': self.investments.get(pool.id, {}),
            'claim_supply': self.claims.total_supply(pool.id),
            'escrow_balance': self.currency.balance_of(pool.escrow),
            'disbursement_count': self._disbursements.get(pool.id, 0),
            **extra
        }

    def _run(self, operation: str, pool: Pool, action: Callable[[List[TransferLeg]], Dict[str, Any]]) -> Dict[str, Any]:
        """Run `action` as one atomic unit; any failure restores the pool's full state."""
        saved_pool = replace(pool)
        saved_investments = OrderedDict(self.investments[pool.id])
        saved_claims = self.claims.snapshot(pool.id)
        saved_rewards = self.rewards.ledger.snapshot(pool.id)
        saved_disbursements = self._disbursements.get(pool.id, 0)
        legs: List[TransferLeg] = []

        def restore():
            self.currency.reverse(legs)
            self.rewards.ledger.restore(pool.id, saved_rewards)
            self.claims.restore(pool.id, saved_claims)
            self.investments[pool.id] = OrderedDict(saved_investments)
            self._disbursements[pool.id] = saved_disbursements
            pool.__dict__.update(saved_pool.__dict__)
            logger.warning(f"[POOL_ENGINE] Restored {pool.id} after failed {operation}")

        return self.enforcer.enforce_action(
            operation,
            lambda: action(legs),
            restore=restore,
            pool_id=pool.id
        )

    def _transfer(self, legs: List[TransferLeg], from_account: str, to_account: str, amount: int, memo: str):
        legs.append(self.currency.transfer(from_account, to_account, amount, memo))

    # ----------------------------------------
    # Pool creation
    # ----------------------------------------

    @_tracked("create_pool")
    def create_pool(
        self,
        caller: str,
        receivable_id: str,
        target_amount: int,
        min_investment: int,
        max_investment: int,
        maturity_date: int,
        reward_pool: int = 0,
        apr: Optional[int] = None,
        name: str = "",
        symbol: str = "",
        pool_type: PoolType = PoolType.RECEIVABLE,
        policy: Optional[PoolPolicy] = None
    ) -> Pool:
        """Create an ACTIVE pool against a VERIFIED receivable."""
        self.access.require(caller, Role.ADMIN, Role.VERIFIER)

        if pool_type != PoolType.RECEIVABLE:
            raise InvalidAmount(f"Pool type {pool_type.name} is not supported")

        receivable = self.receivables.get_receivable(receivable_id)
        if receivable.status != ReceivableStatus.VERIFIED:
            raise WrongState(f"Receivable {receivable_id} is {receivable.status.name}, not VERIFIED")

        policy = policy or self.policy
        if not policy.is_valid():
            raise InvalidAmount(f"Invalid fee policy: {policy}")
        if target_amount <= 0 or target_amount > receivable.amount_usd:
            raise InvalidAmount(
                f"Target {format_usd(target_amount)} must be positive and at most "
                f"the receivable amount {format_usd(receivable.amount_usd)}"
            )
        if min_investment <= 0 or min_investment > max_investment or min_investment > target_amount:
            raise InvalidAmount(
                f"Investment bounds invalid: min={format_usd(min_investment)}, max={format_usd(max_investment)}"
            )
        if reward_pool < 0:
            raise InvalidAmount(f"Reward pool must be non-negative, got {reward_pool}")
        if maturity_date <= self.now_fn():
            raise InvalidDueDate(f"Maturity {maturity_date} is not in the future")

        apr = receivable.apr if apr is None else apr
        if apr < 0:
            raise InvalidAmount(f"APR must be non-negative, got {apr}")

        with self._registry_lock:
            if receivable_id in self.pool_by_receivable:
                raise WrongState(
                    f"Receivable {receivable_id} already financed by {self.pool_by_receivable[receivable_id]}"
                )

            pool_id = f"POOL-{uuid.uuid4().hex[:12].upper()}"
            pool = Pool(
                id=pool_id,
                pool_type=pool_type,
                receivable_id=receivable_id,
                exporter=receivable.exporter,
                target_amount=target_amount,
                min_investment=min_investment,
                max_investment=max_investment,
                apr=apr,
                maturity_date=maturity_date,
                reward_pool=reward_pool,
                name=name or f"Receivable Pool {receivable_id}",
                symbol=symbol or "TFP-CLAIM",
                policy=policy,
                created_by=caller
            )

            def _create() -> Dict[str, Any]:
                self.pools[pool_id] = pool
                self.investments[pool_id] = OrderedDict()
                self.pool_by_receivable[receivable_id] = pool_id
                self._pool_locks[pool_id] = threading.Lock()
                return self._result(pool, None)

            def _discard():
                self.pools.pop(pool_id, None)
                self.investments.pop(pool_id, None)
                self.pool_by_receivable.pop(receivable_id, None)
                self._pool_locks.pop(pool_id, None)

            self.enforcer.enforce_action("create_pool", _create, restore=_discard, pool_id=pool_id)
            self.currency.reserve(policy.platform_treasury, policy.amc_treasury)

        pool_created_counter.labels(pool_type=pool_type.name).inc()
        record_transition(pool.status.name)
        logger.info(
            f"[POOL_ENGINE] Created {pool_id} for {receivable_id}: target={format_usd(target_amount)}, "
            f"min={format_usd(min_investment)}, max={format_usd(max_investment)}, apr={apr}bps"
        )
        self.events.emit(
            "PoolCreated", pool_id, pool.status.name,
            {'target_amount': target_amount, 'reward_pool': reward_pool},
            pool_id=pool_id
        )
        return pool

    # ----------------------------------------
    # Investment and disbursement
    # ----------------------------------------

    @_tracked("invest")
    def invest(self, pool_id: str, investor: str, amount: int) -> InvestmentReceipt:
        """
        Accept up to `amount` from `investor`, clipped to the remaining pool
        capacity and the investor's remaining allowance. The call that brings
        total_invested to target also pays the exporter and moves to FUNDED.
        """
        self._require_external(investor, "investor")

        lock = self._lock_for(pool_id)
        with lock:
            pool = self.get_pool(pool_id)

            if pool.total_invested >= pool.target_amount:
                raise CapacityExceeded(f"Pool {pool_id} is fully funded")
            if pool.status != PoolStatus.ACTIVE:
                raise WrongState(f"Pool {pool_id} is {pool.status.name}, not ACTIVE")
            if amount <= 0:
                raise InvalidAmount(f"Investment must be positive, got {amount}")

            current = self.investments[pool_id].get(investor, 0)
            allowance = pool.max_investment - current
            if allowance <= 0:
                raise CapacityExceeded(f"{investor} has reached the cap of {format_usd(pool.max_investment)}")

            accepted = min(amount, pool.remaining_capacity, allowance)
            if accepted < pool.min_investment:
                raise BelowMinimum(
                    f"Accepted amount {format_usd(accepted)} is below minimum {format_usd(pool.min_investment)}"
                )

            status_before = pool.status
            claim_tokens = accepted * pool.claim_tokens_per_unit

            def _invest(legs: List[TransferLeg]) -> Dict[str, Any]:
                self._transfer(legs, investor, pool.escrow, accepted, f"investment {pool_id}")
                self.claims.mint(pool_id, investor, claim_tokens, ENGINE_ID)
                reward = self.rewards.emit(pool_id, investor, pool.reward_pool, accepted, pool.target_amount)
                pool.rewards_emitted += reward

                self.investments[pool_id][investor] = current + accepted
                previous = pool.total_invested
                pool.total_invested = previous + accepted

                disbursement = None
                if previous < pool.target_amount == pool.total_invested:
                    disbursement = self._disburse(pool, legs)
                    pool.status = PoolStatus.FUNDED

                return self._result(pool, status_before, reward=reward, disbursement=disbursement)

            result = self._run("invest", pool, _invest)
            disbursement = result['disbursement']

            record_investment(accepted)
            logger.info(
                f"[POOL_ENGINE] {investor} invested {format_usd(accepted)} in {pool_id} "
                f"(requested {format_usd(amount)}), total={format_usd(pool.total_invested)}"
            )
            self.events.emit(
                "InvestmentMade", pool_id, pool.status.name,
                {'investor': investor, 'amount': accepted, 'claim_tokens': claim_tokens,
                 'reward_tokens': result['reward']},
                pool_id=pool_id
            )

            if disbursement is not None:
                disbursement_counter.inc()
                record_transition(pool.status.name)
                self.events.emit(
                    "ExporterPaid", pool_id, pool.status.name,
                    disbursement.split.to_dict(),
                    pool_id=pool_id
                )

            return InvestmentReceipt(
                pool_id=pool_id,
                investor=investor,
                requested=amount,
                accepted=accepted,
                claim_tokens=claim_tokens,
                reward_tokens=result['reward'],
                total_invested=pool.total_invested,
                status=pool.status,
                disbursement=disbursement
            )

    def _disburse(self, pool: Pool, legs: List[TransferLeg]) -> Disbursement:
        if pool.disbursement is not None or self._disbursements.get(pool.id, 0):
            raise AlreadyDisbursed(f"Pool {pool.id} already disbursed")

        split = compute_fee_split(pool.target_amount, pool.policy)
        first = len(legs)
        memo = f"disbursement {pool.id}"
        self._transfer(legs, pool.escrow, pool.exporter, split.exporter_amount, memo)
        self._transfer(legs, pool.escrow, pool.policy.platform_treasury, split.platform_fee, memo)
        self._transfer(legs, pool.escrow, pool.policy.amc_treasury, split.amc_fee, memo)

        pool.disbursement = Disbursement(pool.id, pool.exporter, split, legs[first:])
        self._disbursements[pool.id] = self._disbursements.get(pool.id, 0) + 1

        logger.info(
            f"[POOL_ENGINE] Disbursed {pool.id}: exporter {pool.exporter} {format_usd(split.exporter_amount)}, "
            f"platform {format_usd(split.platform_fee)}, amc {format_usd(split.amc_fee)}"
        )
        return pool.disbursement

    # ----------------------------------------
    # Maturity, payment, distribution, default
    # ----------------------------------------

    @_tracked("update_maturity")
    def update_maturity(self, pool_id: str) -> PoolStatus:
        """FUNDED -> MATURED once due; a no-op in every other case."""
        lock = self._lock_for(pool_id)
        with lock:
            pool = self.get_pool(pool_id)
            now = self.now_fn()

            if pool.status != PoolStatus.FUNDED or now < pool.maturity_date:
                logger.debug(f"[POOL_ENGINE] update_maturity no-op for {pool_id} ({pool.status.name})")
                return pool.status

            status_before = pool.status

            def _mature(legs: List[TransferLeg]) -> Dict[str, Any]:
                pool.status = PoolStatus.MATURED
                return self._result(pool, status_before)

            self._run("update_maturity", pool, _mature)

            record_transition(pool.status.name)
            logger.info(f"[POOL_ENGINE] {pool_id} matured at {now}")
            self.events.emit("PoolMatured", pool_id, pool.status.name, {}, pool_id=pool_id)
            return pool.status

    @_tracked("record_payment")
    def record_payment(self, caller: str, pool_id: str, amount: int, payer: Optional[str] = None) -> Pool:
        """Record a repayment into escrow. Cumulative payments reaching target move the pool to PAID."""
        self.access.require(caller, Role.ADMIN, Role.SERVICER)

        lock = self._lock_for(pool_id)
        with lock:
            pool = self.get_pool(pool_id)
            if pool.status not in (PoolStatus.FUNDED, PoolStatus.MATURED):
                raise WrongState(f"Pool {pool_id} is {pool.status.name}; payments need FUNDED or MATURED")
            if amount <= 0:
                raise InvalidAmount(f"Payment must be positive, got {amount}")

            payer = payer or caller
            self._require_external(payer, "payer")
            status_before = pool.status

            def _record(legs: List[TransferLeg]) -> Dict[str, Any]:
                self._transfer(legs, payer, pool.escrow, amount, f"repayment {pool_id}")
                pool.total_paid += amount
                if pool.total_paid >= pool.target_amount:
                    pool.payment_status = PaymentStatus.FULL
                    pool.status = PoolStatus.PAID
                else:
                    pool.payment_status = PaymentStatus.PARTIAL
                return self._result(pool, status_before)

            self._run("record_payment", pool, _record)

            payment_counter.labels(payment_status=pool.payment_status.name).inc()
            if pool.status != status_before:
                record_transition(pool.status.name)
            logger.info(
                f"[POOL_ENGINE] Payment {format_usd(amount)} on {pool_id} from {payer}: "
                f"total_paid={format_usd(pool.total_paid)} ({pool.payment_status.name})"
            )
            self.events.emit(
                "PaymentRecorded", pool_id, pool.status.name,
                {'amount': amount, 'total_paid': pool.total_paid, 'payment_status': pool.payment_status.name},
                pool_id=pool_id
            )
            return pool

    @_tracked("distribute_yield")
    def distribute_yield(self, pool_id: str) -> Distribution:
        """
        Pay each holder floor(balance * total_paid / supply), burn every claim
        balance, sweep the rounding remainder to the platform treasury, CLOSE.
        Permissionless.
        """
        lock = self._lock_for(pool_id)
        with lock:
            pool = self.get_pool(pool_id)
            if pool.status != PoolStatus.PAID:
                raise WrongState(f"Pool {pool_id} is {pool.status.name}, not PAID")

            status_before = pool.status

            def _distribute(legs: List[TransferLeg]) -> Dict[str, Any]:
                supply = self.claims.total_supply(pool_id)
                payouts: "OrderedDict[str, int]" = OrderedDict()

                for investor, balance in self.claims.holders(pool_id):
                    payout = balance * pool.total_paid // supply
                    if payout > 0:
                        self._transfer(legs, pool.escrow, investor, payout, f"yield {pool_id}")
                    self.claims.burn(pool_id, investor, balance, ENGINE_ID)
                    payouts[investor] = payout

                remainder = pool.total_paid - sum(payouts.values())
                if remainder > 0:
                    self._transfer(legs, pool.escrow, pool.policy.platform_treasury, remainder,
                                   f"rounding {pool_id}")

                pool.distribution = Distribution(pool_id, pool.total_paid, supply, payouts, remainder)
                pool.status = PoolStatus.CLOSED
                return self._result(pool, status_before)

            self._run("distribute_yield", pool, _distribute)
            distribution = pool.distribution

            distribution_counter.inc()
            record_transition(pool.status.name)
            release_committed_capital(pool.total_invested)
            logger.info(
                f"[POOL_ENGINE] Distributed {format_usd(pool.total_paid)} from {pool_id} to "
                f"{len(distribution.payouts)} holders, remainder {format_usd(distribution.remainder)}"
            )
            self.events.emit(
                "YieldDistributed", pool_id, pool.status.name,
                {'payouts': dict(distribution.payouts), 'remainder': distribution.remainder},
                pool_id=pool_id
            )
            return distribution

    @_tracked("mark_defaulted")
    def mark_defaulted(self, caller: str, pool_id: str) -> Pool:
        """Administrative terminal state. No value moves."""
        self.access.require(caller, Role.ADMIN)

        lock = self._lock_for(pool_id)
        with lock:
            pool = self.get_pool(pool_id)
            if pool.status not in (PoolStatus.ACTIVE, PoolStatus.FUNDED, PoolStatus.MATURED):
                raise WrongState(f"Pool {pool_id} is {pool.status.name} and cannot default")

            status_before = pool.status

            def _default(legs: List[TransferLeg]) -> Dict[str, Any]:
                pool.status = PoolStatus.DEFAULTED
                return self._result(pool, status_before)

            self._run("mark_defaulted", pool, _default)

            record_transition(pool.status.name)
            release_committed_capital(pool.total_invested)
            logger.warning(f"[POOL_ENGINE] {pool_id} DEFAULTED from {status_before.name} by {caller}")
            self.events.emit(
                "PoolDefaulted", pool_id, pool.status.name,
                {'total_invested': pool.total_invested, 'total_paid': pool.total_paid},
                pool_id=pool_id
            )
            return pool

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    def get_pool(self, pool_id: str) -> Pool:
        pool = self.pools.get(pool_id)
        if pool is None:
            raise NotFound(f"Pool {pool_id} not found")
        return pool

    def list_pools(self, status: Optional[PoolStatus] = None) -> List[Pool]:
        return [p for p in self.pools.values() if status is None or p.status == status]

    def get_investment(self, pool_id: str, investor: str) -> int:
        self.get_pool(pool_id)
        return self.investments[pool_id].get(investor, 0)

    def get_investors(self, pool_id: str) -> List[str]:
        self.get_pool(pool_id)
        return list(self.investments[pool_id])

    def get_disbursement(self, pool_id: str) -> Optional[Disbursement]:
        return self.get_pool(pool_id).disbursement

    def get_distribution(self, pool_id: str) -> Optional[Distribution]:
        return self.get_pool(pool_id).distribution

    def claim_balance(self, pool_id: str, investor: str) -> int:
        self.get_pool(pool_id)
        return self.claims.balance_of(pool_id, investor)
