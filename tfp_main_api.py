"""
TradeFlow Pools - FastAPI Application
HTTP adapter over the pool settlement engine with enforcement and observability
"""

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from contextlib import asynccontextmanager
import logging

from tfp_access_control_v1 import Role
from tfp_config import settings
from tfp_e2e_integration_v1 import TradeFlowPlatform
from tfp_enforcement_integration import ERROR_STATUS, TradeFlowError
from tfp_metrics import metrics_registry
from tfp_pool_engine_v1 import PoolStatus, PoolType
from tfp_receivable_ledger_v1 import ReceivableStatus

logger = logging.getLogger("tfp.api")

# ============================================
# PYDANTIC MODELS (API DTOs)
# ============================================

class ExporterApproveRequest(BaseModel):
    exporter: str = Field(..., min_length=1)
    kyc_hash: str = Field(..., min_length=1)
    cac_hash: str = Field(..., min_length=1)
    bank_hash: str = Field(..., min_length=1)
    business_name: str = Field(..., min_length=1, max_length=200)
    country: str = Field(..., min_length=2, max_length=64)

class ReceivableCreateRequest(BaseModel):
    importer: str = Field(..., min_length=1)
    amount_usd: int = Field(..., description="Micro-units (10^6 per USD)")
    due_date: int = Field(..., description="Unix seconds")
    metadata_ref: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "importer": "IMP-001",
                "amount_usd": 10_000_000_000,
                "due_date": 1798761600,
                "metadata_ref": "ipfs://bafy..."
            }
        }

class VerifyRequest(BaseModel):
    risk_score: int
    apr: int = Field(..., description="Basis points")

class PoolCreateRequest(BaseModel):
    receivable_id: str
    target_amount: int
    min_investment: int
    max_investment: int
    maturity_date: int
    reward_pool: int = 0
    apr: Optional[int] = None
    name: str = ""
    symbol: str = ""
    pool_type: str = Field("RECEIVABLE", pattern=r'^(RWA|RECEIVABLE)$')

class AmountRequest(BaseModel):
    amount: int

class PaymentRequest(BaseModel):
    amount: int
    payer: Optional[str] = None

class RoleGrantRequest(BaseModel):
    caller_id: str = Field(..., min_length=1)
    role: str = Field(..., pattern=r'^(admin|verifier|servicer)$')

class HealthResponse(BaseModel):
    status: str
    version: str
    health_score: float
    total_receivables: int
    total_pools: int
    total_events: int
    ledger_integrity: bool
    event_integrity: bool

# ============================================
# APPLICATION LIFECYCLE
# ============================================

class AppState:
    """Global application state."""
    def __init__(self):
        self.platform = TradeFlowPlatform(grants={settings.bootstrap_admin: [Role.ADMIN]})

app_state = AppState()

def get_platform() -> TradeFlowPlatform:
    return app_state.platform

def caller_id(x_caller_id: Optional[str] = Header(None)) -> str:
    """Identity of the caller; every mutating endpoint requires it."""
    if not x_caller_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Caller-Id header required"
        )
    return x_caller_id

def _parse_status(enum_cls, value: Optional[str]):
    if not value:
        return None
    try:
        return enum_cls[value.upper()]
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown status {value!r}"
        )

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info(f"{settings.service_name} starting...")
    logger.info(f"Fees: platform={settings.platform_fee_bps}bps, amc={settings.amc_fee_bps}bps")
    yield
    logger.info(f"{settings.service_name} shutting down...")

# ============================================
# FASTAPI APPLICATION
# ============================================

app = FastAPI(
    title="TradeFlow Pools",
    description="Receivable financing pools with exactly-once settlement",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================
# HEALTH & OBSERVABILITY
# ============================================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint."""
    return {
        "service": settings.service_name,
        "version": "1.0.0",
        "status": "operational"
    }

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(platform: TradeFlowPlatform = Depends(get_platform)):
    """System health check."""
    health = platform.get_system_health()
    intact = health['ledger_integrity'] and health['event_integrity']

    return HealthResponse(
        status="healthy" if intact and health['health_score'] >= 0.95 else "degraded",
        version="1.0.0",
        health_score=health['health_score'],
        total_receivables=health['total_receivables'],
        total_pools=health['total_pools'],
        total_events=health['total_events'],
        ledger_integrity=health['ledger_integrity'],
        event_integrity=health['event_integrity']
    )

@app.get("/metrics", tags=["Observability"])
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

# ============================================
# ADMINISTRATION
# ============================================

@app.post("/api/v1/roles", status_code=status.HTTP_201_CREATED, tags=["Admin"])
async def grant_role(
    request: RoleGrantRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    platform.access.require(caller, Role.ADMIN)
    platform.access.grant(request.caller_id, Role(request.role))
    return {"caller_id": request.caller_id, "role": request.role}

@app.post("/api/v1/accounts/{account_id}/deposits", tags=["Admin"])
async def deposit(
    account_id: str,
    request: AmountRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    """Fund a settlement account (operations entry point)."""
    platform.access.require(caller, Role.ADMIN)
    platform.currency.deposit(account_id, request.amount)
    return {"account_id": account_id, "balance": platform.currency.balance_of(account_id)}

@app.get("/api/v1/accounts/{account_id}", tags=["Admin"])
async def get_account(account_id: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return {"account_id": account_id, "balance": platform.currency.balance_of(account_id)}

# ============================================
# EXPORTERS
# ============================================

@app.post("/api/v1/exporters", status_code=status.HTTP_201_CREATED, tags=["Exporters"])
async def approve_exporter(
    request: ExporterApproveRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    profile = platform.directory.approve(
        caller,
        request.exporter,
        request.kyc_hash,
        request.cac_hash,
        request.bank_hash,
        request.business_name,
        request.country
    )
    return profile.to_dict()

@app.delete("/api/v1/exporters/{exporter}", tags=["Exporters"])
async def revoke_exporter(
    exporter: str,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    platform.directory.revoke(caller, exporter)
    return platform.directory.get_profile(exporter).to_dict()

@app.get("/api/v1/exporters", tags=["Exporters"])
async def list_exporters(platform: TradeFlowPlatform = Depends(get_platform)):
    return [p.to_dict() for p in platform.directory.list_approved()]

@app.get("/api/v1/exporters/{exporter}", tags=["Exporters"])
async def get_exporter(exporter: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return platform.directory.get_profile(exporter).to_dict()

@app.get("/api/v1/exporters/{exporter}/receivables", tags=["Exporters"])
async def get_exporter_receivables(exporter: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return [r.to_dict() for r in platform.receivables.get_exporter_receivables(exporter)]

# ============================================
# RECEIVABLES
# ============================================

@app.post("/api/v1/receivables", status_code=status.HTTP_201_CREATED, tags=["Receivables"])
async def create_receivable(
    request: ReceivableCreateRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    """Create a receivable. The caller is the exporter."""
    receivable_id = platform.receivables.create_receivable(
        exporter=caller,
        importer=request.importer,
        amount_usd=request.amount_usd,
        due_date=request.due_date,
        metadata_ref=request.metadata_ref
    )
    return platform.receivables.get_receivable(receivable_id).to_dict()

@app.post("/api/v1/receivables/{receivable_id}/verify", tags=["Receivables"])
async def verify_receivable(
    receivable_id: str,
    request: VerifyRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    platform.receivables.verify_receivable(caller, receivable_id, request.risk_score, request.apr)
    return platform.receivables.get_receivable(receivable_id).to_dict()

@app.get("/api/v1/receivables", tags=["Receivables"])
async def list_receivables(
    status_filter: Optional[str] = None,
    platform: TradeFlowPlatform = Depends(get_platform)
):
    wanted = _parse_status(ReceivableStatus, status_filter)
    return [r.to_dict() for r in platform.receivables.list_receivables(wanted)]

@app.get("/api/v1/receivables/{receivable_id}", tags=["Receivables"])
async def get_receivable(receivable_id: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return platform.receivables.get_receivable(receivable_id).to_dict()

# ============================================
# POOLS
# ============================================

@app.post("/api/v1/pools", status_code=status.HTTP_201_CREATED, tags=["Pools"])
async def create_pool(
    request: PoolCreateRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    pool = platform.engine.create_pool(
        caller,
        request.receivable_id,
        target_amount=request.target_amount,
        min_investment=request.min_investment,
        max_investment=request.max_investment,
        maturity_date=request.maturity_date,
        reward_pool=request.reward_pool,
        apr=request.apr,
        name=request.name,
        symbol=request.symbol,
        pool_type=PoolType[request.pool_type]
    )
    return pool.to_dict()

@app.get("/api/v1/pools", tags=["Pools"])
async def list_pools(
    status_filter: Optional[str] = None,
    platform: TradeFlowPlatform = Depends(get_platform)
):
    wanted = _parse_status(PoolStatus, status_filter)
    return [p.to_dict() for p in platform.engine.list_pools(wanted)]

@app.get("/api/v1/pools/{pool_id}", tags=["Pools"])
async def get_pool(pool_id: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return platform.engine.get_pool(pool_id).to_dict()

@app.post("/api/v1/pools/{pool_id}/investments", tags=["Pools"])
async def invest(
    pool_id: str,
    request: AmountRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    """Invest as the caller. The accepted amount may be clipped to the caps."""
    return platform.engine.invest(pool_id, caller, request.amount).to_dict()

@app.get("/api/v1/pools/{pool_id}/investments/{investor}", tags=["Pools"])
async def get_investment(pool_id: str, investor: str, platform: TradeFlowPlatform = Depends(get_platform)):
    return {
        "pool_id": pool_id,
        "investor": investor,
        "amount": platform.engine.get_investment(pool_id, investor),
        "claim_tokens": str(platform.engine.claim_balance(pool_id, investor))
    }

@app.post("/api/v1/pools/{pool_id}/maturity", tags=["Pools"])
async def update_maturity(pool_id: str, platform: TradeFlowPlatform = Depends(get_platform)):
    new_status = platform.engine.update_maturity(pool_id)
    return {"pool_id": pool_id, "status": new_status.name}

@app.post("/api/v1/pools/{pool_id}/payments", tags=["Pools"])
async def record_payment(
    pool_id: str,
    request: PaymentRequest,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    return platform.engine.record_payment(caller, pool_id, request.amount, payer=request.payer).to_dict()

@app.post("/api/v1/pools/{pool_id}/distribution", tags=["Pools"])
async def distribute_yield(pool_id: str, platform: TradeFlowPlatform = Depends(get_platform)):
    """Permissionless trigger."""
    return platform.engine.distribute_yield(pool_id).to_dict()

@app.post("/api/v1/pools/{pool_id}/default", tags=["Pools"])
async def mark_defaulted(
    pool_id: str,
    caller: str = Depends(caller_id),
    platform: TradeFlowPlatform = Depends(get_platform)
):
    return platform.engine.mark_defaulted(caller, pool_id).to_dict()

@app.get("/api/v1/pools/{pool_id}/events", tags=["Pools"])
async def pool_events(pool_id: str, platform: TradeFlowPlatform = Depends(get_platform)) -> List[Dict]:
    platform.engine.get_pool(pool_id)
    return [e.to_dict() for e in platform.events.for_pool(pool_id)]

# ============================================
# ERROR HANDLERS
# ============================================

@app.exception_handler(TradeFlowError)
async def tradeflow_error_handler(request, exc: TradeFlowError):
    code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if code >= 500:
        logger.error(f"{exc.code}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code}: {exc}")
    return JSONResponse(
        status_code=code,
        content={"error": exc.code, "detail": str(exc)}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tfp_main_api:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower()
    )
