"""
TradeFlow Pools (TFP) - Event Log
Version: 1.0.0

Structured, signed events for indexers and observers. The ledgers remain the
source of truth; events are emitted only after an operation has committed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import hmac
import json
import threading

from tfp_enforcement_v1 import SystemCompromised, sign_payload, logger

# ============================================
# DATA MODELS
# ============================================

@dataclass
class PoolEvent:
    """One committed state change."""
    sequence: int
    operation: str          # e.g. "InvestmentMade", "ExporterPaid"
    subject_id: str         # pool, receivable or exporter identifier
    status: Optional[str]   # resulting status of the subject
    deltas: Dict[str, Any]  # integer monetary deltas (micro-units / token units)
    pool_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    signature: str = ""

    def payload(self) -> str:
        body = {
            'sequence': self.sequence,
            'operation': self.operation,
            'subject_id': self.subject_id,
            'pool_id': self.pool_id,
            'status': self.status,
            'deltas': self.deltas,
            'timestamp': self.timestamp.isoformat(),
        }
        return json.dumps(body, sort_keys=True, default=str)

    def verify_signature(self) -> bool:
        return hmac.compare_digest(self.signature, sign_payload(self.payload()))

    def to_dict(self) -> Dict:
        return {
            'sequence': self.sequence,
            'operation': self.operation,
            'subject_id': self.subject_id,
            'pool_id': self.pool_id,
            'status': self.status,
            'deltas': self.deltas,
            'timestamp': self.timestamp.isoformat(),
            'signature': self.signature
        }

# ============================================
# EVENT LOG
# ============================================

Observer = Callable[[PoolEvent], None]

class EventLog:
    """Append-only event log with synchronous observers."""

    def __init__(self):
        self.events: List[PoolEvent] = []
        self._observers: List[Observer] = []
        self._lock = threading.Lock()

    def subscribe(self, observer: Observer):
        self._observers.append(observer)

    def emit(
        self,
        operation: str,
        subject_id: str,
        status: Optional[str],
        deltas: Dict[str, Any],
        pool_id: Optional[str] = None
    ) -> PoolEvent:
        with self._lock:
            event = PoolEvent(
                sequence=len(self.events) + 1,
                operation=operation,
                subject_id=subject_id,
                status=status,
                deltas=dict(deltas),
                pool_id=pool_id
            )
            event.signature = sign_payload(event.payload())
            self.events.append(event)

        logger.info(f"[EVENTS] #{event.sequence} {operation} {subject_id} -> {status}")

        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                # Observers are for indexing only
                logger.error(f"[EVENTS] Observer failed on #{event.sequence}: {e}", exc_info=e)

        return event

    def for_subject(self, subject_id: str) -> List[PoolEvent]:
        return [e for e in self.events if e.subject_id == subject_id]

    def for_pool(self, pool_id: str) -> List[PoolEvent]:
        return [e for e in self.events if e.pool_id == pool_id]

    def count(self, operation: str, pool_id: Optional[str] = None) -> int:
        return sum(
            1 for e in self.events
            if e.operation == operation and (pool_id is None or e.pool_id == pool_id)
        )

    def verify_integrity(self):
        """Raise SystemCompromised if any event was altered after signing."""
        for event in self.events:
            if not event.verify_signature():
                raise SystemCompromised(f"Event #{event.sequence} signature mismatch")
