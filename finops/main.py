"""Finops Provider Integration & ACH Approval API.

Puts a tenant's payment, banking and compliance providers behind one
capability contract, screens entities across every configured compliance
provider, and walks ACH transfers through amount-based approval before
the banking provider executes them. Every mutation is written to an
append-only audit trail.

Run with:
    python3 -m uvicorn finops.main:app --host 0.0.0.0 --port 8000
"""

import json
import logging
from pathlib import Path
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from finops.audit.trail import AuditTrail
from finops.compliance.aggregator import ComplianceAggregator
from finops.errors import FinopsError
from finops.models import Settings
from finops.providers.catalog import default_catalog
from finops.registry.service_registry import ServiceRegistry
from finops.routes import audit, compliance, registry, transfers
from finops.storage.memory import MemoryStore
from finops.workflow.ach import ACHApprovalWorkflow

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Resolve the data/ directory relative to this file so the server works
# regardless of which directory uvicorn is launched from.
DATA_DIR = Path(__file__).parent.parent / "data"

app = FastAPI(
    title="Finops Provider Integration & ACH Approval API",
    description=(
        "Tenant-scoped provider registry, multi-provider compliance "
        "screening, and multi-level ACH transfer approval with an "
        "append-only audit trail."
    ),
    version="1.0.0",
)


def load_settings(path: Path = DATA_DIR / "settings.json") -> Settings:
    """Read settings overrides from ``path``, or use defaults if absent."""
    if path.exists():
        with open(path, "r") as f:
            return Settings(**json.load(f))
    return Settings()


@app.on_event("startup")
async def startup() -> None:
    """Build the store, registry and services once for the process."""
    settings = load_settings()

    store = MemoryStore()
    audit_trail = AuditTrail(store)
    service_registry = ServiceRegistry(
        store=store,
        audit=audit_trail,
        catalog=default_catalog(),
        settings=settings,
    )

    # Attach to app state for dependency injection in routes
    app.state.settings = settings
    app.state.store = store
    app.state.audit = audit_trail
    app.state.registry = service_registry
    app.state.aggregator = ComplianceAggregator(service_registry, store, audit_trail, settings)
    app.state.workflow = ACHApprovalWorkflow(service_registry, store, audit_trail, settings)
    logger.info(
        "Service started: default_banking_provider=%s approval_threshold=%s",
        settings.default_banking_provider, settings.approval_threshold,
    )


@app.exception_handler(FinopsError)
async def finops_error_handler(request: Request, exc: FinopsError) -> JSONResponse:
    """Render domain errors as JSON with their status and code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed: path=%s tenant=%s code=%s message=%s",
        request.url.path,
        request.headers.get("x-tenant-id", ""),
        exc.code,
        exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


# Mount all API routers
app.include_router(registry.router)
app.include_router(compliance.router)
app.include_router(transfers.router)
app.include_router(audit.router)


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "healthy"}
