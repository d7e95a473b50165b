# paygate/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paygate.api.endpoints import fortune, rpc
from paygate.core.config import settings
from paygate.core.version import VERSION
from paygate.services.relay import RelayClient
from paygate.x402.gate import ResourceGate
from paygate.x402.middleware import X402Middleware

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CORS_ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_ALLOWED_HEADERS = ["Content-Type", "Authorization", "Cookie", "X-PAYMENT", "X-USER-ADDRESS"]
CORS_EXPOSED_HEADERS = ["X-PAYMENT-RESPONSE"]


def create_app(relay_client: Optional[RelayClient] = None) -> FastAPI:
    """
    Build the application.

    The relay client is the one long-lived chain resource. It is created at
    startup (unless one is passed in), shared by the resource gate and the
    merchant RPC route through ``app.state``, and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay = relay_client or RelayClient()
        app.state.relay_client = relay
        app.state.resource_gate = ResourceGate.from_relay(relay)
        logger.info(f"Relay client ready for {relay.rpc_url} (chain {settings.X402_CHAIN_ID})")
        try:
            yield
        finally:
            await relay.aclose()
            logger.info("Relay client closed")

    app = FastAPI(title=settings.PROJECT_NAME, version=VERSION, lifespan=lifespan)

    app.include_router(fortune.router, prefix="/api/self", tags=["fortune"])
    app.include_router(rpc.router, tags=["rpc"])

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}", "version": VERSION}

    # Middleware added last runs first: CORS must wrap the payment gate so
    # 402/400/500 responses carry CORS headers too.
    app.add_middleware(X402Middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
        expose_headers=CORS_EXPOSED_HEADERS,
    )
    return app


app = create_app()
