"""
FastAPI Server for the Offboard Engine.

Provides REST API endpoints for reading the audit trail, the tracked set
and the error log, and for triggering a reconciliation cycle.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..audit import AuditTrailStore, error_log
from ..config import EngineConfig, load_config
from ..engine import ReconciliationEngine, TrackedSetStore
from ..exceptions import CollaboratorUnavailable, ConfigurationError, StateDocumentError, StateLockError
from ..models import AuditRecord, CycleSummary, ErrorEntry

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "OFFBOARD_CONFIG"


# Global components (initialized on startup or by configure())
engine_config: Optional[EngineConfig] = None
audit_trail: Optional[AuditTrailStore] = None
tracked_set: Optional[TrackedSetStore] = None


def configure(config: EngineConfig) -> None:
    """Point the API at one engine configuration."""
    global engine_config, audit_trail, tracked_set

    engine_config = config
    audit_trail = AuditTrailStore(config.audit_trail_path)
    tracked_set = TrackedSetStore(config.tracked_set_path)
    logger.info(f"API configured (simulation={config.simulation})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    if engine_config is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)
        if config_path:
            logger.info(f"Loading configuration from {CONFIG_ENV_VAR}={config_path}")
            configure(load_config(config_path))
        else:
            logger.warning(f"{CONFIG_ENV_VAR} not set; endpoints will report 503 until configured")

    yield

    logger.info("Shutting down Offboard Engine API server")


app = FastAPI(
    title="Offboard Engine API",
    description="Employee offboarding automation - audit trail, tracked set and reconciliation",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_config() -> EngineConfig:
    if engine_config is None:
        raise HTTPException(status_code=503, detail="Engine not configured")
    return engine_config


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Offboard Engine API", "version": __version__, "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "simulation": engine_config.simulation if engine_config else None,
        "components": {
            "config": engine_config is not None,
            "audit_trail": audit_trail is not None,
            "tracked_set": tracked_set is not None,
        }
    }


@app.get("/audit", response_model=List[AuditRecord])
async def get_audit_trail(
    user: Optional[str] = Query(None, description="Identifier; returns its full history"),
    limit: int = Query(100, ge=1, description="Maximum number of results")
):
    """Get audit trail records, optionally for one identifier."""
    _require_config()

    try:
        records = audit_trail.history(user) if user else audit_trail.load_all()
    except StateDocumentError as e:
        logger.error(f"Error reading audit trail: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    if user and not records:
        raise HTTPException(status_code=404, detail=f"No audit records for {user}")
    return records[-limit:]


@app.get("/tracked")
async def get_tracked():
    """Get principals currently tracked as having the hold applied."""
    _require_config()

    names = tracked_set.load()
    return {"count": len(names), "principal_names": names}


@app.get("/errors", response_model=List[ErrorEntry])
async def get_errors(
    since: Optional[datetime] = Query(None, description="Only errors at or after this time"),
    limit: int = Query(100, ge=1, description="Maximum number of results")
):
    """Get the most recent error log entries."""
    config = _require_config()
    return error_log(config.log_dir).read(since=since, limit=limit)


@app.post("/reconcile", response_model=CycleSummary)
def run_reconcile():
    """
    Run one reconciliation cycle synchronously.

    Returns 409 when another runner holds the state lock and 503 when a
    directory system cannot be reached.
    """
    config = _require_config()

    try:
        engine = ReconciliationEngine(config)
        return engine.run_cycle()
    except StateLockError as e:
        logger.warning(f"Reconcile rejected: {e}")
        raise HTTPException(status_code=409, detail=str(e)) from e
    except (CollaboratorUnavailable, ConfigurationError) as e:
        logger.error(f"Reconcile aborted: {e}")
        raise HTTPException(status_code=503, detail=str(e)) from e


def start_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "offboard_engine.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()
