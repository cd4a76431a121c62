"""
TradeFlow Pools (TFP) - Exporter Directory
Version: 1.0.0

Approved exporter identities and their attestation hashes. Consulted by the
receivable ledger; KYC itself happens outside this system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from tfp_access_control_v1 import AccessPolicy, Role
from tfp_enforcement_v1 import NotFound, logger
from tfp_pool_events_v1 import EventLog

# ============================================
# DATA MODELS
# ============================================

@dataclass
class ExporterProfile:
    """Exporter identity and attestation hashes."""
    exporter: str
    kyc_hash: str
    cac_hash: str
    bank_hash: str
    business_name: str
    country: str
    approved: bool = True
    approved_at: datetime = field(default_factory=datetime.now)
    approved_by: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'exporter': self.exporter,
            'kyc_hash': self.kyc_hash,
            'cac_hash': self.cac_hash,
            'bank_hash': self.bank_hash,
            'business_name': self.business_name,
            'country': self.country,
            'approved': self.approved,
            'approved_at': self.approved_at.isoformat(),
            'approved_by': self.approved_by
        }

# ============================================
# DIRECTORY
# ============================================

class ExporterDirectory:
    """Approved exporters, keyed by identity."""

    def __init__(self, access: AccessPolicy, events: Optional[EventLog] = None):
        self.access = access
        self.events = events or EventLog()
        self.profiles: Dict[str, ExporterProfile] = {}

    def approve(
        self,
        caller: str,
        exporter: str,
        kyc_hash: str,
        cac_hash: str,
        bank_hash: str,
        business_name: str,
        country: str
    ) -> ExporterProfile:
        """Approve (or re-approve, overwriting) an exporter. Admin only."""
        self.access.require(caller, Role.ADMIN)

        profile = ExporterProfile(
            exporter=exporter,
            kyc_hash=kyc_hash,
            cac_hash=cac_hash,
            bank_hash=bank_hash,
            business_name=business_name,
            country=country,
            approved_by=caller
        )
        self.profiles[exporter] = profile

        logger.info(f"[DIRECTORY] Approved exporter {exporter} ({business_name}, {country})")
        self.events.emit("ExporterApproved", exporter, "APPROVED", {})
        return profile

    def revoke(self, caller: str, exporter: str):
        self.access.require(caller, Role.ADMIN)
        profile = self.get_profile(exporter)
        profile.approved = False

        logger.warning(f"[DIRECTORY] Revoked exporter {exporter}")
        self.events.emit("ExporterRevoked", exporter, "REVOKED", {})

    def is_approved(self, exporter: str) -> bool:
        profile = self.profiles.get(exporter)
        return profile is not None and profile.approved

    def get_profile(self, exporter: str) -> ExporterProfile:
        profile = self.profiles.get(exporter)
        if profile is None:
            raise NotFound(f"Exporter {exporter} was never approved")
        return profile

    def list_approved(self) -> List[ExporterProfile]:
        return [p for p in self.profiles.values() if p.approved]
