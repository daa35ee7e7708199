# x402_gateway/main.py
from typing import Optional

from fastapi import FastAPI
from x402_gateway.core.config import settings
from x402_gateway.api.endpoints import proxy
from x402_gateway.x402.facilitator import FacilitatorClient
from x402_gateway.x402.middleware import X402Middleware
from x402_gateway.x402.routes import RouteConfig, load_route_config_file
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    route_config: Optional[RouteConfig] = None,
    facilitator_client: Optional[FacilitatorClient] = None
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        route_config: Per-route payment configuration; loaded from
            X402_ROUTES_FILE when not given
        facilitator_client: Facilitator client; built from settings when not given
    """
    if route_config is None:
        if settings.X402_ROUTES_FILE:
            route_config = load_route_config_file(settings.X402_ROUTES_FILE)
        else:
            logger.warning("X402_ROUTES_FILE not configured, all routes are unmetered")
            route_config = RouteConfig()

    app = FastAPI(title=settings.PROJECT_NAME)

    @app.get("/health", summary="Health Check", tags=["default"])
    def health():
        """ Basic health check endpoint. """
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}

    # Everything else is proxied to the upstream API
    app.include_router(proxy.router)

    app.add_middleware(
        X402Middleware,
        route_config=route_config,
        facilitator_client=facilitator_client
    )
    return app


app = create_app()
