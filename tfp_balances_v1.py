"""
TradeFlow Pools (TFP) - Settlement Currency Accounts
Version: 1.0.0

Integer micro-unit balances per account. Every movement is a TransferLeg so a
failed multi-leg operation can be compensated leg by leg without touching
value moved concurrently by other pools.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Set
import threading

from tfp_config import format_usd
from tfp_enforcement_v1 import InvalidAmount, TransferFailed, logger


ESCROW_PREFIX = "ESCROW-"


def escrow_account(pool_id: str) -> str:
    return f"{ESCROW_PREFIX}{pool_id}"


@dataclass
class TransferLeg:
    """One completed movement of settlement currency."""
    from_account: str
    to_account: str
    amount: int
    memo: str = ""
    executed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            'from_account': self.from_account,
            'to_account': self.to_account,
            'amount': self.amount,
            'memo': self.memo,
            'executed_at': self.executed_at.isoformat()
        }


class CurrencyLedger:
    """In-memory settlement currency ledger (production would sit on a payment rail)."""

    def __init__(self, balances: Dict[str, int] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.blocked: Set[str] = set()
        self.history: List[TransferLeg] = []
        self.reserved: Set[str] = set()
        self._lock = threading.Lock()

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def deposit(self, account: str, amount: int):
        """Fund an account from outside the system."""
        if amount <= 0:
            raise InvalidAmount(f"Deposit must be positive, got {amount}")
        with self._lock:
            self.balances[account] = self.balance_of(account) + amount
        logger.info(f"[BALANCE] Deposited {format_usd(amount)} to {account}")

    def reserve(self, *accounts: str):
        """Mark accounts the platform itself owns, such as fee treasuries."""
        self.reserved.update(a for a in accounts if a)

    def is_reserved(self, account: str) -> bool:
        """Escrows and treasuries can never act as an investor or payer."""
        return account.startswith(ESCROW_PREFIX) or account in self.reserved

    def block(self, account: str):
        """Mark an endpoint unavailable; transfers touching it fail."""
        self.blocked.add(account)
        logger.warning(f"[BALANCE] Blocked {account}")

    def unblock(self, account: str):
        self.blocked.discard(account)
        logger.info(f"[BALANCE] Unblocked {account}")

    def transfer(self, from_account: str, to_account: str, amount: int, memo: str = "") -> TransferLeg:
        if amount < 0:
            raise InvalidAmount(f"Transfer amount must be non-negative, got {amount}")

        with self._lock:
            if from_account in self.blocked or to_account in self.blocked:
                raise TransferFailed(f"Rail unavailable for {from_account} -> {to_account}")

            available = self.balance_of(from_account)
            if available < amount:
                raise TransferFailed(
                    f"{from_account} holds {format_usd(available)}, needs {format_usd(amount)}"
                )

            self.balances[from_account] = available - amount
            self.balances[to_account] = self.balance_of(to_account) + amount

            leg = TransferLeg(from_account, to_account, amount, memo)
            self.history.append(leg)

        logger.info(f"[BALANCE] {from_account} -> {to_account}: {format_usd(amount)} {memo}".rstrip())
        return leg

    def reverse(self, legs: Iterable[TransferLeg]):
        """Undo completed legs, newest first. Ignores blocks; used only for rollback."""
        with self._lock:
            for leg in reversed(list(legs)):
                self.balances[leg.to_account] = self.balance_of(leg.to_account) - leg.amount
                self.balances[leg.from_account] = self.balance_of(leg.from_account) + leg.amount
                self._forget(leg)
                logger.warning(
                    f"[BALANCE] Reversed {leg.from_account} -> {leg.to_account}: {format_usd(leg.amount)}"
                )

    def _forget(self, leg: TransferLeg):
        # Reversed legs are recent, so search from the tail
        for i in range(len(self.history) - 1, -1, -1):
            if self.history[i] is leg:
                del self.history[i]
                return

    def total(self) -> int:
        return sum(self.balances.values())
