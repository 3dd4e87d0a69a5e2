# Vault - FastAPI Backend
#
# REST API over the vault hierarchy. Binds to localhost by default; every
# vault route requires the per-process session token.

import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventSeverity, EventType, get_audit_logger
from ..vault.services import get_vault_services, set_vault_services
from .security import (
    get_session_token,
    initialize_session_token,
    session_token_is_configured,
)
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Vaultkeeper API",
    description="Group hierarchy and reference resolution for a secrets vault",
    version=__version__,
)

# CORS: local origins only
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)


@app.on_event("startup")
async def startup_event():
    """Open the vault database and install the session token."""
    services = get_vault_services()
    initialize_session_token(services.settings)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Vaultkeeper API server started",
        details={"db_path": str(services.settings.db_path)},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="Vaultkeeper API server shutting down",
    )
    set_vault_services(None)


@app.get("/api/session")
async def get_session():
    """
    Hand the session token to the local frontend.

    Unprotected by necessity: the caller needs the token to authenticate.
    A token configured by the host vault layer is never served here.
    """
    if session_token_is_configured():
        raise HTTPException(status_code=404, detail="Session token is provided by the host")
    return {"session_token": get_session_token()}


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {"name": "Vaultkeeper API", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
