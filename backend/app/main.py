"""
Command Gateway - FastAPI Application

Main entry point for the Command Gateway backend.

Architecture:
- Submission -> RuleEngine (classify) -> ExecutionEngine | ApprovalAggregator
- ApprovalAggregator -> ExecutionEngine once the tier-adjusted threshold is met
- Every state change -> AuditService (best-effort)
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .routers import auth_router, commands_router, rules_router, audit_router, scheduler_router
from .database import init_db
from .services.gateway import GatewayError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Command Gateway",
    description="""
    Command Gateway - Policy-Gated Command Execution

    Commands are matched against admin-defined rules and then executed,
    rejected, or held for multi-admin approval. Every execution costs one
    credit and every decision lands in the audit trail.

    ## Pipeline
    1. **Rule Engine**: highest-priority matching rule wins; unmatched commands are rejected
    2. **Time Windows**: approval rules may auto-accept during configured hours
    3. **Approvals**: required votes scale with requester tier (junior/senior/lead)
    4. **Execution**: one credit debited, exactly once, in a single transaction
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Map gateway errors to JSON error responses."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(auth_router)
app.include_router(commands_router)
app.include_router(rules_router)
app.include_router(audit_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Command Gateway",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
