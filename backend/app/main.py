"""
Report Workflow - FastAPI Application

Main entry point for the report approval backend.

Lifecycle:
- Draft → Submitted → ManagerApproved → Completed
- Manager-authored reports go Submitted → Completed on senior approval
- Rejected reports return to their author and may be resubmitted
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import LOG_LEVEL, SENIOR_APPROVER_LABEL
from .routers import reports_router, auth_router
from .database import init_db
from .services.workflow.metrics import InMemoryWorkflowMetrics

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info("Report workflow backend started")
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Report Workflow",
    description=f"""
    Report Workflow - Multi-stage Report Approval

    Staff author reports which move through line manager and
    {SENIOR_APPROVER_LABEL} approval. Approvers attach supporting documents
    at the stage they act in.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# One metrics instance per process, injected into each request's service
app.state.workflow_metrics = InMemoryWorkflowMetrics()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(reports_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Report Workflow",
        "version": "1.0.0",
        "senior_approver_label": SENIOR_APPROVER_LABEL,
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
