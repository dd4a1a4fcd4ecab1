"""
Ark Orders - FastAPI Backend

Order lifecycle endpoints for automation callers, bound to one network.
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI

from ark_orders.client import ArkClient
from ark_orders.config import Settings, settings as default_settings
from ark_orders.middleware.error_handler import install_error_handlers
from ark_orders.observability.audit import setup_log_rotation
from ark_orders.routes_orders import router as orders_router

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(client: Optional[ArkClient] = None, settings: Optional[Settings] = None,
               rotate_logs: bool = False) -> FastAPI:
    """Build the app; without ``client`` one is created from settings at startup."""
    settings = settings or default_settings
    app = FastAPI(title="Ark Orders", version="0.1.0")
    app.state.ark_client = client

    install_error_handlers(app)
    app.include_router(orders_router, prefix="/orders", tags=["orders"])

    @app.on_event("startup")
    async def startup_event():
        if rotate_logs:
            setup_log_rotation()
        if app.state.ark_client is None:
            app.state.ark_client = ArkClient.from_settings(settings)
            logger.info(f"Ark client started: {settings.redacted()}")

    @app.on_event("shutdown")
    async def shutdown_event():
        client = app.state.ark_client
        if client is not None:
            await client.aclose()
            logger.info("Ark client closed")

    @app.get("/health")
    async def health():
        client = app.state.ark_client
        if client is None:
            return {"status": "starting"}
        return {
            "status": "ok",
            "network": client.registry.network,
            "chain_id": hex(client.registry.chain_id),
            "roles": dict(client.registry.roles()),
            "signer_configured": client.default_account is not None,
            "in_flight_submissions": len(client.progress),
        }

    return app


app = create_app(rotate_logs=True)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("ARK_HTTP_PORT", "8000")))
