"""
TradeFlow Pools (TFP) - Token Ledgers
Version: 1.0.0

Claim tokens are pool-scoped shares of invested capital; only the bound minter
(the pool settlement engine) may mint or burn them. Reward tokens are a flat
incentive paid at investment time by the RewardEmitter.

All token amounts are integers with 18 fractional digits.
"""

from collections import OrderedDict
from typing import Dict, List, Optional, Tuple
import threading

from tfp_enforcement_v1 import (
    InsufficientBalance,
    InvalidAmount,
    Unauthorized,
    logger
)

# ============================================
# CLAIM TOKEN LEDGER
# ============================================

class ClaimTokenLedger:
    """Per-pool balances keyed by investor, in first-mint order."""

    def __init__(self, minter: Optional[str] = None):
        self.minter = minter
        self._balances: Dict[str, "OrderedDict[str, int]"] = {}
        self._lock = threading.Lock()

    def bind_minter(self, minter: str):
        if self.minter is not None and self.minter != minter:
            raise Unauthorized(f"Claim ledger already bound to {self.minter}")
        self.minter = minter
        logger.info(f"[CLAIMS] Minter bound: {minter}")

    def _require_minter(self, caller: str):
        if self.minter is None or caller != self.minter:
            logger.warning(f"AUTHORIZATION VIOLATION: {caller!r} attempted claim mint/burn")
            raise Unauthorized(f"{caller!r} may not mint or burn claim tokens")

    def mint(self, pool_id: str, investor: str, amount: int, caller: str):
        self._require_minter(caller)
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")

        with self._lock:
            pool = self._balances.setdefault(pool_id, OrderedDict())
            pool[investor] = pool.get(investor, 0) + amount

        logger.debug(f"[CLAIMS] Minted {amount} to {investor} in {pool_id}")

    def burn(self, pool_id: str, investor: str, amount: int, caller: str):
        self._require_minter(caller)

        with self._lock:
            balance = self._balances.get(pool_id, {}).get(investor, 0)
            if amount > balance:
                raise InsufficientBalance(
                    f"{investor} holds {balance} claim tokens in {pool_id}, cannot burn {amount}"
                )
            self._balances[pool_id][investor] = balance - amount

        logger.debug(f"[CLAIMS] Burned {amount} from {investor} in {pool_id}")

    def balance_of(self, pool_id: str, investor: str) -> int:
        return self._balances.get(pool_id, {}).get(investor, 0)

    def total_supply(self, pool_id: str) -> int:
        return sum(self._balances.get(pool_id, {}).values())

    def holders(self, pool_id: str) -> List[Tuple[str, int]]:
        """Investors with a nonzero balance, in first-mint order."""
        return [(inv, bal) for inv, bal in self._balances.get(pool_id, {}).items() if bal > 0]

    def snapshot(self, pool_id: str) -> "OrderedDict[str, int]":
        with self._lock:
            return OrderedDict(self._balances.get(pool_id, {}))

    def restore(self, pool_id: str, snapshot: "OrderedDict[str, int]"):
        with self._lock:
            self._balances[pool_id] = OrderedDict(snapshot)
        logger.warning(f"[CLAIMS] Restored balances for {pool_id}")

# ============================================
# REWARD TOKENS
# ============================================

class RewardTokenLedger:
    """Reward balances, tracked per (pool, investor) so a pool can be rolled back alone."""

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def credit(self, pool_id: str, investor: str, amount: int):
        with self._lock:
            key = (pool_id, investor)
            self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, investor: str) -> int:
        return sum(amount for (_, inv), amount in self._balances.items() if inv == investor)

    def issued_for_pool(self, pool_id: str) -> int:
        return sum(amount for (pid, _), amount in self._balances.items() if pid == pool_id)

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def snapshot(self, pool_id: str) -> Dict[Tuple[str, str], int]:
        with self._lock:
            return {k: v for k, v in self._balances.items() if k[0] == pool_id}

    def restore(self, pool_id: str, snapshot: Dict[Tuple[str, str], int]):
        with self._lock:
            for key in [k for k in self._balances if k[0] == pool_id]:
                del self._balances[key]
            self._balances.update(snapshot)


class RewardEmitter:
    """
    Fixed-ratio incentive: an investment of `accepted` in a pool with budget
    `reward_pool` and target `target_amount` earns
    floor(reward_pool * accepted / target_amount) reward tokens. Because the
    accepted amounts of a pool sum to at most its target, total emission never
    exceeds the budget.
    """

    def __init__(self, ledger: RewardTokenLedger):
        self.ledger = ledger

    @staticmethod
    def reward_for(reward_pool: int, accepted: int, target_amount: int) -> int:
        if target_amount <= 0:
            return 0
        return reward_pool * accepted // target_amount

    def emit(self, pool_id: str, investor: str, reward_pool: int, accepted: int, target_amount: int) -> int:
        reward = self.reward_for(reward_pool, accepted, target_amount)
        if reward > 0:
            self.ledger.credit(pool_id, investor, reward)
            logger.debug(f"[CLAIMS] Reward {reward} to {investor} for {pool_id}")
        return reward
