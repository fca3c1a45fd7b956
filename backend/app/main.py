"""
Traffic Watch - FastAPI Application

Main entry point for the Traffic Watch backend.

Lifecycle:
- Citizen files a report (PENDING)
- Police review it once (APPROVED -> reward, REJECTED -> penalty + debt)
- Citizen may appeal a rejection once
- Overdue debts accrue weekly late fees
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import (
    auth_router, citizen_reports_router, police_router, rewards_router,
    admin_router, scheduler_router,
)
from .database import init_db
from .services.lifecycle import LifecycleError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Traffic Watch",
    description="""
    Traffic Watch - Citizen Violation Reporting

    Citizens report traffic violations with evidence. Police review each
    report exactly once; the outcome is settled on an append-only ledger.

    ## Lifecycle
    1. **Report**: citizen submits plate, violation type and evidence (PENDING)
    2. **Review**: police approve (reward) or reject (penalty and debt)
    3. **Appeal**: one appeal per rejected report; failure adds 1.5% of the penalty
    4. **Debt**: unpaid penalties accrue weekly late fees after the grace period

    ## Key Principles
    - A report is reviewed at most once; status is written by a guarded UPDATE
    - At most one completed settlement per report and transaction type
    - Balances are always derived from the ledger, never stored
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


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    """Translate service errors to JSON responses."""
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": exc.code},
    )


# Include routers
app.include_router(auth_router)
app.include_router(citizen_reports_router)
app.include_router(police_router)
app.include_router(rewards_router)
app.include_router(admin_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Traffic Watch",
        "version": "1.0.0",
        "description": "Citizen Violation Reporting",
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
