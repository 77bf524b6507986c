"""
System routes: health, status, connectivity, feature toggles, notifications
and troubleshooting guidance.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from local_llm.api.dependencies import (
    get_connection_monitor,
    get_degradation_service,
    get_error_handler,
    get_llm_client,
    get_notifier,
    get_settings,
    get_user_guidance,
)
from local_llm.api.models import (
    ConnectionCheckResponse,
    FeatureStateResponse,
    GuidanceResponse,
    HealthResponse,
    NotificationListResponse,
    StatusResponse,
)
from local_llm.config import Settings
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.guidance.notifier import NotificationCenter
from local_llm.guidance.user_guidance import UserGuidanceSystem, render_details
from local_llm.llm.openai_client import LocalLLMClient
from local_llm.models.enums import Feature
from local_llm.resilience.degradation import GracefulDegradationService
from local_llm.resilience.monitor import ConnectionMonitor

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Checks that the inference server answers GET /v1/models.",
    responses={
        200: {"description": "Inference server reachable"},
        503: {"description": "Inference server unreachable"},
    },
)
async def health_check(
    client: LocalLLMClient = Depends(get_llm_client),
    settings: Settings = Depends(get_settings),
):
    connected = await client.check_health()
    response = HealthResponse(
        status="healthy" if connected else "unhealthy",
        version=settings.APP_VERSION,
        server_url=client.base_url,
        connected=connected,
    )
    logger.info("Health check", status=response.status)

    return JSONResponse(
        status_code=status.HTTP_200_OK if connected else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json"),
    )


@router.get("/status", response_model=StatusResponse, summary="Client, feature and error status")
async def get_status(
    client: LocalLLMClient = Depends(get_llm_client),
    degradation: GracefulDegradationService = Depends(get_degradation_service),
    error_handler: ErrorHandler = Depends(get_error_handler),
) -> StatusResponse:
    return StatusResponse(
        client=client.get_status(),
        degradation=degradation.get_status(),
        errors=error_handler.get_error_statistics(),
    )


@router.post(
    "/connection/check",
    response_model=ConnectionCheckResponse,
    summary="Check connectivity now",
    description="Runs a health check immediately; feature states follow the result.",
)
async def check_connection(
    monitor: ConnectionMonitor = Depends(get_connection_monitor),
) -> ConnectionCheckResponse:
    connected = await monitor.check_now()
    return ConnectionCheckResponse(connected=connected, last_check=monitor.last_check)


@router.post(
    "/features/{feature}/enable",
    response_model=FeatureStateResponse,
    summary="Re-enable a disabled feature",
)
async def enable_feature(
    feature: Feature,
    degradation: GracefulDegradationService = Depends(get_degradation_service),
) -> FeatureStateResponse:
    state = await degradation.enable_feature(feature)
    return FeatureStateResponse(feature=feature, state=state)


@router.get("/notifications", response_model=NotificationListResponse, summary="Recent notifications")
async def list_notifications(
    limit: Optional[int] = Query(default=None, ge=1),
    notifier: NotificationCenter = Depends(get_notifier),
) -> NotificationListResponse:
    return NotificationListResponse(notifications=notifier.recent(limit))


@router.get(
    "/guidance/troubleshooting",
    response_model=GuidanceResponse,
    summary="Troubleshooting guide",
)
async def troubleshooting_guide(
    category: Optional[str] = None,
    guidance: UserGuidanceSystem = Depends(get_user_guidance),
) -> GuidanceResponse:
    guide = await guidance.show_troubleshooting_guide(category)
    return GuidanceResponse(guidance=guide, markdown=render_details(guide))
