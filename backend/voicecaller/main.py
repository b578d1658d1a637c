"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voicecaller.api.v1.routes import api_router
from voicecaller.core.config import get_config_manager, get_settings
from voicecaller.core.container import build_services
from voicecaller.core.validation import validate_providers_on_startup

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates provider configuration (strict in production)
    - Builds providers and call services
    - Starts the background reconciler

    Shutdown:
    - Stops the reconciler
    - Releases every live per-call resource and provider client
    """
    # ========================
    # STARTUP
    # ========================
    settings = get_settings()
    logger.info(f"Starting Voice Caller ({settings.environment})...")

    strict_validation = settings.environment == "production"
    try:
        validate_providers_on_startup(settings, strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    services = await build_services(settings, get_config_manager())
    app.state.services = services
    services.reconciler.start()

    logger.info("Voice Caller started successfully")

    yield  # Application is running

    # ========================
    # SHUTDOWN
    # ========================
    logger.info("Shutting down Voice Caller...")
    try:
        await services.shutdown()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
    app.state.services = None

    logger.info("Voice Caller shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Voice Caller",
        description="Outbound AI sales calls over Telnyx Call Control",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"message": "Voice Caller API", "status": "running", "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
