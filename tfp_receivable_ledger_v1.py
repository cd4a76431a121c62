"""
TradeFlow Pools (TFP) - Receivable Ledger
Version: 1.0.0

Creation and one-time verification of trade receivables, with full invariant
enforcement. Receivables are never deleted; a verified receivable is the only
thing a financing pool can be created against.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional
import threading
import time
import uuid

from tfp_access_control_v1 import AccessPolicy, Role
from tfp_config import format_usd
from tfp_enforcement_v1 import (
    AlreadyVerified,
    DecisionLedger,
    InvalidAmount,
    InvalidDueDate,
    InvariantEnforcer,
    NotFound,
    Unauthorized,
    logger
)
from tfp_exporter_directory_v1 import ExporterDirectory
from tfp_metrics import receivable_created_counter, receivable_verified_counter
from tfp_pool_events_v1 import EventLog
from tfp_pool_invariants_v1 import receivable_invariants

# ============================================
# DATA MODELS
# ============================================

class ReceivableStatus(Enum):
    PENDING_VERIFICATION = 0
    VERIFIED = 1

@dataclass
class Receivable:
    """Trade receivable. Amount in micro-units, due date in unix seconds."""
    id: str
    exporter: str
    importer: str
    amount_usd: int
    due_date: int
    metadata_ref: str
    status: ReceivableStatus = ReceivableStatus.PENDING_VERIFICATION
    risk_score: int = 0
    apr: int = 0  # bps

    created_at: datetime = field(default_factory=datetime.now)
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'exporter': self.exporter,
            'importer': self.importer,
            'amount_usd': self.amount_usd,
            'due_date': self.due_date,
            'metadata_ref': self.metadata_ref,
            'status': self.status.name,
            'risk_score': self.risk_score,
            'apr': self.apr,
            'created_at': self.created_at.isoformat(),
            'verified_at': self.verified_at.isoformat() if self.verified_at else None,
            'verified_by': self.verified_by
        }

# ============================================
# STORAGE LAYER
# ============================================

class ReceivableStorage:
    """In-memory receivable storage (production would use database)."""

    def __init__(self):
        self.receivables: Dict[str, Receivable] = {}
        self.by_exporter: Dict[str, List[str]] = {}

    def count(self, receivable_id: str) -> int:
        return 1 if receivable_id in self.receivables else 0

    def add(self, receivable: Receivable):
        self.receivables[receivable.id] = receivable
        self.by_exporter.setdefault(receivable.exporter, []).append(receivable.id)
        logger.info(f"[STORAGE] Stored receivable {receivable.id}")

    def get(self, receivable_id: str) -> Optional[Receivable]:
        return self.receivables.get(receivable_id)

    def discard(self, receivable_id: str):
        receivable = self.receivables.pop(receivable_id, None)
        if receivable is not None:
            self.by_exporter[receivable.exporter].remove(receivable_id)
            logger.warning(f"[STORAGE] Discarded receivable {receivable_id}")

    def snapshot(self, receivable_id: str) -> Receivable:
        return _copy(self.receivables[receivable_id])

    def restore(self, saved: Receivable):
        # Restore in place so callers holding the Receivable see the rollback
        self.receivables[saved.id].__dict__.update(saved.__dict__)
        logger.warning(f"[STORAGE] Restored receivable {saved.id}")


def _copy(receivable: Receivable) -> Receivable:
    return Receivable(**receivable.__dict__)

# ============================================
# RECEIVABLE LEDGER
# ============================================

class ReceivableLedger:
    """Receivable creation and verification with invariant enforcement."""

    def __init__(
        self,
        directory: ExporterDirectory,
        access: AccessPolicy,
        decision_ledger: DecisionLedger,
        events: Optional[EventLog] = None,
        storage: Optional[ReceivableStorage] = None,
        now_fn: Callable[[], int] = None
    ):
        self.directory = directory
        self.access = access
        self.events = events or directory.events
        self.storage = storage or ReceivableStorage()
        self.now_fn = now_fn or (lambda: int(time.time()))

        self.enforcer = InvariantEnforcer(receivable_invariants(), decision_ledger)
        self._lock = threading.Lock()

        logger.info("[RECEIVABLES] Initialized with 3 invariants")

    def create_receivable(
        self,
        exporter: str,
        importer: str,
        amount_usd: int,
        due_date: int,
        metadata_ref: str = ""
    ) -> str:
        """Create a PENDING_VERIFICATION receivable for an approved exporter."""
        if not self.directory.is_approved(exporter):
            logger.warning(f"[RECEIVABLES] Rejected receivable from unapproved exporter {exporter}")
            raise Unauthorized(f"Exporter {exporter} is not approved")
        if amount_usd <= 0:
            raise InvalidAmount(f"Receivable amount must be positive, got {amount_usd}")
        if due_date <= self.now_fn():
            raise InvalidDueDate(f"Due date {due_date} is not in the future")

        receivable = Receivable(
            id=f"RCV-{uuid.uuid4().hex[:12].upper()}",
            exporter=exporter,
            importer=importer,
            amount_usd=amount_usd,
            due_date=due_date,
            metadata_ref=metadata_ref
        )
        def _create() -> Dict:
            self.storage.add(receivable)
            return {'receivable': receivable, 'storage': self.storage}

        with self._lock:
            self.enforcer.enforce_action(
                "create_receivable",
                _create,
                restore=lambda: self.storage.discard(receivable.id),
                exporter=exporter
            )

        receivable_created_counter.inc()
        logger.info(
            f"[RECEIVABLES] Created {receivable.id}: {exporter} -> {importer}, "
            f"{format_usd(amount_usd)}, due {due_date}"
        )
        self.events.emit(
            "ReceivableCreated", receivable.id, receivable.status.name,
            {'amount_usd': amount_usd}
        )
        return receivable.id

    def verify_receivable(self, caller: str, receivable_id: str, risk_score: int, apr: int):
        """Set risk score and APR exactly once. Verifier only."""
        self.access.require(caller, Role.VERIFIER)

        with self._lock:
            receivable = self.get_receivable(receivable_id)
            if receivable.status == ReceivableStatus.VERIFIED:
                raise AlreadyVerified(f"Receivable {receivable_id} already verified")
            if not 0 <= risk_score <= 100:
                raise InvalidAmount(f"Risk score must be 0-100, got {risk_score}")
            if apr < 0:
                raise InvalidAmount(f"APR must be non-negative, got {apr}")

            saved = self.storage.snapshot(receivable_id)

            def _verify() -> Dict:
                receivable.risk_score = risk_score
                receivable.apr = apr
                receivable.verified_by = caller
                receivable.verified_at = datetime.now()
                receivable.status = ReceivableStatus.VERIFIED
                return {'receivable': receivable, 'storage': self.storage}

            self.enforcer.enforce_action(
                "verify_receivable",
                _verify,
                restore=lambda: self.storage.restore(saved),
                receivable_id=receivable_id
            )

        receivable_verified_counter.inc()
        logger.info(f"[RECEIVABLES] Verified {receivable_id}: risk={risk_score}, apr={apr}bps by {caller}")
        self.events.emit(
            "ReceivableVerified", receivable_id, receivable.status.name,
            {'risk_score': risk_score, 'apr': apr}
        )

    def get_receivable(self, receivable_id: str) -> Receivable:
        receivable = self.storage.get(receivable_id)
        if receivable is None:
            raise NotFound(f"Receivable {receivable_id} not found")
        return receivable

    def get_exporter_receivables(self, exporter: str) -> List[Receivable]:
        return [self.storage.get(rid) for rid in self.storage.by_exporter.get(exporter, [])]

    def list_receivables(self, status: Optional[ReceivableStatus] = None) -> List[Receivable]:
        return [
            r for r in self.storage.receivables.values()
            if status is None or r.status == status
        ]
