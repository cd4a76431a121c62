"""
TradeFlow Pools (TFP) - Enforcement Layer
Version: 1.0.0

Every state-changing operation in the pool settlement engine and its ledgers
runs through InvariantEnforcer: state is snapshotted, the action runs, the
registered invariants are post-checked, and any failure restores the snapshot
before the error reaches the caller. Each check is recorded as a signed
EnforcementDecision in an append-only DecisionLedger.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import hmac
import logging
import threading
from abc import ABC, abstractmethod

from tfp_config import settings
from tfp_metrics import record_invariant_check

# ============================================
# SYSTEM CONFIGURATION
# ============================================

SYSTEM_SECRET = settings.decision_secret.encode()

class InvariantType(Enum):
    STATE = "state"
    TRANSITION = "transition"
    FINANCIAL = "financial"
    SECURITY = "security"

class Criticality(Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"

class EnforcementResult(Enum):
    PROCEED = "proceed"
    ROLLBACK = "rollback"
    FREEZE = "freeze"

# ============================================
# LOGGING SETUP
# ============================================

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("TFP.Enforcement")

# ============================================
# EXCEPTIONS
# ============================================

class TradeFlowError(Exception):
    """Base class for every rejected operation."""
    code = "TRADEFLOW_ERROR"

class Unauthorized(TradeFlowError):
    """Caller lacks the required capability."""
    code = "UNAUTHORIZED"

class NotFound(TradeFlowError):
    """Unknown exporter, receivable or pool identifier."""
    code = "NOT_FOUND"

class InvalidAmount(TradeFlowError):
    code = "INVALID_AMOUNT"

class InvalidDueDate(TradeFlowError):
    code = "INVALID_DUE_DATE"

class BelowMinimum(TradeFlowError):
    """Accepted investment would fall below the pool's minimum."""
    code = "BELOW_MINIMUM"

class WrongState(TradeFlowError):
    """Operation not permitted in the current pool/receivable status."""
    code = "WRONG_STATE"

class CapacityExceeded(TradeFlowError):
    """Pool target or per-investor cap already reached."""
    code = "CAPACITY_EXCEEDED"

class AlreadyVerified(TradeFlowError):
    code = "ALREADY_VERIFIED"

class AlreadyDisbursed(TradeFlowError):
    code = "ALREADY_DISBURSED"

class InsufficientBalance(TradeFlowError):
    """Claim-token burn larger than the holder's balance."""
    code = "INSUFFICIENT_BALANCE"

class TransferFailed(TradeFlowError):
    """A settlement-currency leg could not be completed."""
    code = "TRANSFER_FAILED"

class InvariantViolation(TradeFlowError):
    """Raised when a post-check fails; state has been rolled back."""
    code = "INVARIANT_VIOLATION"

class SystemCompromised(Exception):
    """Raised when rollback fails or a signature does not verify."""
    pass

# ============================================
# SIGNING
# ============================================

def sign_payload(data: str) -> str:
    return hmac.new(SYSTEM_SECRET, data.encode(), 'sha256').hexdigest()

# ============================================
# ENFORCEMENT DECISION RECORD
# ============================================

@dataclass
class EnforcementDecision:
    """Immutable record of enforcement decision."""
    invariant_id: str
    check_type: str  # "PRE" | "POST"
    result: bool
    action: EnforcementResult
    timestamp: datetime
    operation: str
    signature: str = ""

    def payload(self) -> str:
        return f"{self.invariant_id}:{self.check_type}:{self.result}:{self.operation}:{self.timestamp.isoformat()}"

    def verify_signature(self) -> bool:
        return hmac.compare_digest(self.signature, sign_payload(self.payload()))

# ============================================
# DECISION LEDGER
# ============================================

class DecisionLedger:
    """Immutable, append-only ledger of all enforcement decisions."""

    def __init__(self):
        self.entries: List[EnforcementDecision] = []
        self._lock = threading.Lock()

    def record(self, decision: EnforcementDecision):
        """Append decision to ledger (write-only)."""
        if not decision.verify_signature():
            raise SystemCompromised("Invalid signature on enforcement decision")

        with self._lock:
            self.entries.append(decision)

        record_invariant_check(decision.invariant_id, decision.check_type, decision.result)
        logger.debug(f"LEDGER: Recorded {decision.check_type} for {decision.invariant_id}: {decision.result}")

    def passed(self) -> int:
        return sum(1 for e in self.entries if e.result)

    def health_score(self) -> float:
        total = len(self.entries)
        return self.passed() / total if total else 1.0

    def verify_chain_integrity(self) -> bool:
        """Verify ledger has not been tampered with."""
        return all(entry.verify_signature() for entry in self.entries)

# ============================================
# BASE INVARIANT CLASS
# ============================================

class Invariant(ABC):
    """Base class for all invariants."""

    def __init__(
        self,
        id: str,
        statement: str,
        type: InvariantType,
        criticality: Criticality,
        dependencies: List[str],
        owner: str
    ):
        self.id = id
        self.statement = statement
        self.type = type
        self.criticality = criticality
        self.dependencies = dependencies
        self.owner = owner

    def pre_check(self, **context) -> bool:
        """Execute before action. Returns True if action can proceed."""
        return True

    @abstractmethod
    def post_check(self, result: Dict[str, Any]) -> bool:
        """Execute after action. Returns True if invariant still holds."""
        pass

    def rollback_action(self, state_before: Dict[str, Any]):
        """Extra compensation beyond the snapshot restore, if any."""
        logger.warning(f"ROLLBACK {self.id}: state restored from snapshot")

# ============================================
# INVARIANT ENFORCER
# ============================================

class InvariantEnforcer:
    """Non-bypassable enforcement layer."""

    def __init__(self, invariants: List[Invariant], ledger: DecisionLedger):
        self.invariants = invariants
        self.ledger = ledger
        self._sorted = self._topological_sort(invariants)

    def _topological_sort(self, invariants: List[Invariant]) -> List[Invariant]:
        """Sort invariants by dependency order."""
        sorted_invs = []
        remaining = set(inv.id for inv in invariants)

        while remaining:
            ready = [
                inv for inv in invariants
                if inv.id in remaining and all(dep not in remaining for dep in inv.dependencies)
            ]

            if not ready:
                raise InvariantViolation("Circular dependency detected in invariants")

            sorted_invs.extend(ready)
            for inv in ready:
                remaining.remove(inv.id)

        return sorted_invs

    def enforce_action(
        self,
        operation: str,
        action: Callable[[], Dict[str, Any]],
        restore: Optional[Callable[[], None]] = None,
        **context
    ) -> Dict[str, Any]:
        """
        Execute action with full invariant enforcement.

        `action` returns the post-check context. `restore` puts every touched
        store back to its pre-action state; it runs on any exception raised
        by the action and on any failed post-check.
        """
        state_before = self._capture_state(operation, restore, context)

        for inv in self._sorted:
            decision = self._pre_check(inv, operation, context)
            self.ledger.record(decision)

            if not decision.result:
                logger.error(f"PRE-CHECK FAILED: {inv.id} ({operation})")
                raise InvariantViolation(f"Pre-check failed: {inv.id}")

        try:
            result = action()
        except Exception as e:
            logger.warning(f"ACTION FAILED ({operation}): {type(e).__name__}: {e}")
            self._rollback(state_before)
            raise

        for inv in self._sorted:
            decision = self._post_check(inv, operation, result)
            self.ledger.record(decision)

            if not decision.result:
                logger.error(f"POST-CHECK FAILED: {inv.id} ({operation})")
                self._rollback(state_before)
                raise InvariantViolation(f"Post-check failed: {inv.id}")

        logger.debug(f"All invariant checks PASSED for {operation}")
        return result

    def _pre_check(self, inv: Invariant, operation: str, context: Dict) -> EnforcementDecision:
        try:
            result = inv.pre_check(**context)
            action = EnforcementResult.PROCEED if result else EnforcementResult.FREEZE
        except Exception as e:
            logger.error(f"Pre-check exception: {inv.id}", exc_info=e)
            result = False
            action = EnforcementResult.FREEZE

        return self._decision(inv.id, "PRE", result, action, operation)

    def _post_check(self, inv: Invariant, operation: str, result: Dict[str, Any]) -> EnforcementDecision:
        try:
            check_result = inv.post_check(result)
            action = EnforcementResult.PROCEED if check_result else EnforcementResult.ROLLBACK
        except Exception as e:
            logger.error(f"Post-check exception: {inv.id}", exc_info=e)
            check_result = False
            action = EnforcementResult.ROLLBACK

        return self._decision(inv.id, "POST", check_result, action, operation)

    def _decision(self, invariant_id: str, check_type: str, result: bool,
                  action: EnforcementResult, operation: str) -> EnforcementDecision:
        decision = EnforcementDecision(
            invariant_id=invariant_id,
            check_type=check_type,
            result=bool(result),
            action=action,
            timestamp=datetime.now(),
            operation=operation
        )
        decision.signature = sign_payload(decision.payload())
        return decision

    def _rollback(self, state_before: Dict[str, Any]):
        """Automatic rollback to previous state."""
        logger.warning(f"ROLLBACK INITIATED ({state_before['operation']})")

        restore = state_before.get('restore')
        try:
            if restore is not None:
                restore()
            for inv in reversed(self._sorted):
                inv.rollback_action(state_before)
        except Exception as e:
            logger.critical(f"ROLLBACK FAILED for {state_before['operation']}: {e}")
            raise SystemCompromised(f"Rollback failed for {state_before['operation']}") from e

        logger.info("ROLLBACK COMPLETE")

    def _capture_state(self, operation: str, restore, context: Dict) -> Dict[str, Any]:
        return {
            'timestamp': datetime.now(),
            'operation': operation,
            'restore': restore,
            **context
        }
