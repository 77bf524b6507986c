"""
FastAPI application entry point for Local LLM Companion.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from local_llm.api.dependencies import get_degradation_service, get_llm_client
from local_llm.api.error_handlers import EXCEPTION_HANDLERS
from local_llm.api.middleware import RequestTracingMiddleware
from local_llm.api.routes_chat import router as chat_router
from local_llm.api.routes_generation import router as generation_router
from local_llm.api.routes_models import router as models_router
from local_llm.api.routes_system import router as system_router
from local_llm.api.routes_ws import router as ws_router
from local_llm.config import settings
from local_llm.logging_config import configure_logging

# Configure structured logging before any other imports
configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the health poller on startup; stop it and close the pool on shutdown."""
    logger.info(
        "Application startup",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        server_url=settings.SERVER_URL,
        default_model=settings.DEFAULT_MODEL,
    )

    degradation = get_degradation_service()
    if settings.HEALTH_CHECK_ENABLED:
        # First check runs inline so feature states are known before serving
        await degradation.start()
        logger.info("Inference server connectivity", connected=degradation.monitor.is_connected)
    else:
        logger.info("Health polling disabled")

    logger.info("Application startup complete")
    yield

    logger.info("Application shutdown")
    await degradation.dispose()
    await get_llm_client().close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Local LLM Companion",
    description="Chat, completion and embeddings over a local OpenAI-compatible inference server",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request tracing middleware (must be first for request_id in all logs)
app.add_middleware(RequestTracingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register exception handlers
for exc_class, handler in EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exc_class, handler)

# Include routers
app.include_router(system_router, tags=["system"])
app.include_router(models_router, prefix="/models", tags=["models"])
app.include_router(chat_router, prefix="/chat", tags=["chat"])
app.include_router(generation_router, tags=["generation"])
app.include_router(ws_router, tags=["websocket"])


# Prometheus metrics instrumentation
if settings.PROMETHEUS_ENABLED:
    Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    """Root endpoint with API documentation links."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "server_url": settings.SERVER_URL,
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "metrics": "/metrics" if settings.PROMETHEUS_ENABLED else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "local_llm.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
