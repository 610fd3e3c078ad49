"""
Vault Invariant Guard - FastAPI Application
Transaction verification service with full enforcement and observability
"""

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging
from contextlib import asynccontextmanager

from vig_enforcement_integration import (
    InMemoryStateOracle,
    InvariantViolation,
    PipelineMisconfigured,
    RULE_CATALOG,
    SELECTOR_REGISTRY,
    TransactionCall,
    TransactionVerifier,
    VerifierConfig,
    default_rules,
    hex_to_bytes
)
from vig_metrics import metrics_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("VIG.API")

VERSION = "1.0.0"
ADDRESS_PATTERN = r'^0x[0-9a-fA-F]{40}$'
HEX_PATTERN = r'^0x([0-9a-fA-F]{2})*$'

# ============================================
# PYDANTIC MODELS (API DTOs)
# ============================================

class CallRequest(BaseModel):
    target: str = Field(..., pattern=ADDRESS_PATTERN)
    sender: str = Field(..., pattern=ADDRESS_PATTERN)
    calldata: str = Field(..., pattern=HEX_PATTERN)

class HealthEntry(BaseModel):
    resource: str = Field(..., pattern=ADDRESS_PATTERN)
    principal: str = Field(..., pattern=ADDRESS_PATTERN)
    status: str

class LiquidityEntry(BaseModel):
    resource: str = Field(..., pattern=ADDRESS_PATTERN)
    principal: str = Field(..., pattern=ADDRESS_PATTERN)
    collateral_value: int = Field(..., ge=0)
    liability_value: int = Field(..., ge=0)

class SnapshotModel(BaseModel):
    resources: List[str] = Field(default_factory=list)
    metrics: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    health: List[HealthEntry] = Field(default_factory=list)
    liquidity: List[LiquidityEntry] = Field(default_factory=list)
    controllers: Dict[str, List[str]] = Field(default_factory=dict)

class EventModel(BaseModel):
    emitter: str = Field(..., pattern=ADDRESS_PATTERN)
    topics: List[str] = Field(default_factory=list)
    data: str = Field("0x", pattern=HEX_PATTERN)

class VerifyRequest(BaseModel):
    call: CallRequest
    pre: SnapshotModel
    post: SnapshotModel
    events: List[EventModel] = Field(default_factory=list)
    rules: Optional[List[str]] = None
    query_budget: Optional[int] = Field(None, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "call": {
                    "target": "0x1111111111111111111111111111111111111111",
                    "sender": "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa",
                    "calldata": "0x4b3fd148..."
                },
                "pre": {
                    "resources": ["0x1111111111111111111111111111111111111111"],
                    "liquidity": [{
                        "resource": "0x1111111111111111111111111111111111111111",
                        "principal": "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa",
                        "collateral_value": 100,
                        "liability_value": 70
                    }]
                },
                "post": {"resources": ["0x1111111111111111111111111111111111111111"]},
                "events": []
            }
        }

class ViolationModel(BaseModel):
    rule_name: str
    resource: str
    principal: Optional[str] = None
    reason: str
    pre_value: Any = None
    post_value: Any = None

class RuleReportModel(BaseModel):
    rule_id: str
    triggered: bool
    passed: bool
    duration_seconds: float
    outcomes: List[Dict[str, Any]]

class VerifyResponse(BaseModel):
    passed: bool
    violations: List[ViolationModel]
    rules: List[RuleReportModel]

class SelectorModel(BaseModel):
    discriminant: str
    name: str
    kind: str
    fixed_fields: int
    principal_field: Optional[int] = None
    auxiliary_fields: List[int]

class HealthResponse(BaseModel):
    status: str
    version: str
    rules: List[str]
    selectors: int
    connector: str

# ============================================
# APPLICATION LIFECYCLE
# ============================================

class AppState:
    """Global application state."""
    def __init__(self):
        self.config = VerifierConfig.from_env()
        self.config.apply_logging()

app_state = AppState()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Vault Invariant Guard starting...")
    logger.info(f"Connector {app_state.config.connector}, {len(RULE_CATALOG)} rules available")
    yield
    logger.info("Vault Invariant Guard shutting down...")

# ============================================
# FASTAPI APPLICATION
# ============================================

app = FastAPI(
    title="Vault Invariant Guard",
    description="Transaction invariant verification for lending vaults",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ============================================
# API ENDPOINTS
# ============================================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint."""
    return {
        "service": "Vault Invariant Guard",
        "version": VERSION,
        "status": "operational"
    }

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Service health check."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        rules=list(RULE_CATALOG),
        selectors=len(SELECTOR_REGISTRY),
        connector=app_state.config.connector
    )

@app.get("/api/v1/selectors", response_model=List[SelectorModel], tags=["Registry"])
async def list_selectors():
    """Registered call discriminants and their decoding shapes."""
    return [
        SelectorModel(
            discriminant="0x" + discriminant.hex(),
            name=shape.name,
            kind=shape.kind.value,
            fixed_fields=shape.fixed_fields,
            principal_field=shape.principal_field,
            auxiliary_fields=list(shape.auxiliary_fields)
        )
        for discriminant, shape in SELECTOR_REGISTRY.items()
    ]

@app.post("/api/v1/verify", response_model=VerifyResponse, tags=["Verification"])
def verify_transaction(request: VerifyRequest, enforce: bool = False):
    """
    Verify one executed transaction against its pre/post snapshots.

    With ``enforce=true`` any violation rejects the request with 422.
    """
    try:
        oracle = InMemoryStateOracle.from_dict(
            {
                'pre': request.pre.model_dump(),
                'post': request.post.model_dump(),
                'events': [e.model_dump() for e in request.events]
            },
            query_budget=request.query_budget
        )
        rules = default_rules(app_state.config, only=request.rules)
        call = TransactionCall(
            target=request.call.target,
            sender=request.call.sender,
            calldata=hex_to_bytes(request.call.calldata)
        )
    except (ValueError, KeyError, PipelineMisconfigured) as e:
        logger.error(f"Rejected verification request: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid verification request: {str(e)}"
        )

    verifier = TransactionVerifier(oracle, rules=rules, config=app_state.config)
    if enforce:
        report = verifier.enforce(call)
    else:
        report = verifier.verify(call)

    payload = report.to_dict()
    return VerifyResponse(
        passed=payload['passed'],
        violations=[ViolationModel(**v) for v in payload['violations']],
        rules=[
            RuleReportModel(
                rule_id=r['rule_id'],
                triggered=r['triggered'],
                passed=r['passed'],
                duration_seconds=r['duration_seconds'],
                outcomes=r['outcomes']
            )
            for r in payload['rules']
        ]
    )

@app.get("/metrics", tags=["Observability"])
async def metrics():
    """Prometheus metrics endpoint."""
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from fastapi.responses import Response

    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

# ============================================
# ERROR HANDLERS
# ============================================

@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request, exc: InvariantViolation):
    logger.error(f"Invariant violation: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Transaction violates invariants",
            "violations": [v.to_dict() for v in exc.violations]
        }
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "vig_main_api:app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
