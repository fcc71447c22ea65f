"""
Title Registry - FastAPI Application

Main entry point for the land title registry backend.

Architecture:
- Application → registrar decisions → quorum (ApprovalCoordinator)
- Quorum → certification saga → Ledger transaction + Property + Certificate
- Dispute → freeze → Court case → resolution → unfreeze
- Every transition → append-only AuditLog
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import LOG_LEVEL
from .database import init_db
from .exceptions import RegistryError
from .routers import (
    admin_router,
    applications_router,
    citizen_router,
    court_router,
    disputes_router,
    public_router,
    registrar_router,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
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
    title="Title Registry",
    description="""
    Land Title Registry - application, approval, dispute and certification lifecycle

    ## Lifecycle
    1. **Application**: citizen files an issue, transfer or correction
    2. **Approval**: registrars vote; the approval policy decides quorum
    3. **Certification**: the approved title is written to the ledger, then recorded
    4. **Disputes**: a dispute freezes the title until the court resolves it

    ## Key Principles
    - No property is approved without a confirmed ledger transaction
    - A disputed property can never be transferred
    - Every transition is recorded in an append-only audit log
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


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Include routers
app.include_router(applications_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(disputes_router, prefix="/api")
app.include_router(court_router, prefix="/api")
app.include_router(public_router, prefix="/api")
app.include_router(registrar_router, prefix="/api")
app.include_router(citizen_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Title Registry",
        "version": "1.0.0",
        "description": "Land title application, approval, dispute and certification lifecycle",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m title_registry.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
