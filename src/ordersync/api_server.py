#!/usr/bin/env python3

"""
FastAPI application exposing the sync plugin to the remote storefront.

Provides:
- POST /callback/{method}: inventory_query, lock_import, unlock_import, trigger_order_sync
- POST /webhook/{topic}: order.new, order.updated, delivery.committed,
  inventory.adjusted, shipment.packed
- GET /health: registration status and queued events

Every POST requires ``Authorization: Bearer <callback_secret>``. Callback and
webhook failures are reported in the body as ``{"errors": message}``.
"""

import hmac
import logging
from typing import Any, Dict, Optional

try:
    from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
    from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
    from pydantic import BaseModel
except ImportError:
    raise ImportError(
        "FastAPI dependencies not installed. Install with: pip install ordersync[api]"
    )

from .plugin import SyncPlugin

lgr = logging.getLogger(__name__)

app = FastAPI(
    title="ordersync",
    description="Callback and webhook endpoints for order and inventory sync",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

security = HTTPBearer()


class HealthResponse(BaseModel):
    """Response model for the health check."""
    status: str
    fulfillment_service_registered: bool
    pending_events: Optional[int] = None


def configure(plugin: SyncPlugin) -> FastAPI:
    """Attach the plugin that serves requests."""
    app.state.plugin = plugin
    return app


def get_plugin(request: Request) -> SyncPlugin:
    plugin = getattr(request.app.state, "plugin", None)
    if plugin is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync plugin is not configured",
        )
    return plugin


def verify_callback_secret(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    plugin: SyncPlugin = Depends(get_plugin),
) -> SyncPlugin:
    """
    Check the bearer token against the configured callback secret.

    Raises:
        HTTPException: If no secret is configured or the token does not match
    """
    secret = plugin.config.get("callback_secret")
    if not secret:
        lgr.error("Rejected callback: callback_secret is not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Callback secret is not configured",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not hmac.compare_digest(credentials.credentials.encode(), str(secret).encode()):
        lgr.warning("Rejected callback with an invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return plugin


@app.get("/health", response_model=HealthResponse)
async def health(plugin: SyncPlugin = Depends(get_plugin)):
    pending = plugin.bus.pending() if hasattr(plugin.bus, "pending") else None
    return HealthResponse(
        status="ok",
        fulfillment_service_registered=plugin.is_fulfillment_service_registered(),
        pending_events=pending,
    )


@app.post("/callback/{method}")
def callback(
    method: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    plugin: SyncPlugin = Depends(verify_callback_secret),
):
    lgr.info(f"Callback {method} received")
    return plugin.handle_callback(method, payload or {})


@app.post("/webhook/{topic}")
def webhook(
    topic: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    plugin: SyncPlugin = Depends(verify_callback_secret),
):
    lgr.info(f"Webhook {topic} received")
    return plugin.handle_webhook(topic, payload or {})
