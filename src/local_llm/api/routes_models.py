"""Model listing routes."""

from typing import Optional

from fastapi import APIRouter, Depends

from local_llm.api.dependencies import get_degradation_service, get_llm_client
from local_llm.api.models import ModelListResponse
from local_llm.llm.openai_client import LocalLLMClient
from local_llm.models.api_models import Model
from local_llm.models.enums import ModelType
from local_llm.resilience.degradation import GracefulDegradationService

router = APIRouter()


@router.get(
    "",
    response_model=ModelListResponse,
    summary="List models",
    description="""
    Lists models known to the inference server.

    When the server is unreachable the last successful listing is served
    (or an empty list).
    """,
)
async def list_models(
    type: Optional[ModelType] = None,
    loaded_only: bool = False,
    degradation: GracefulDegradationService = Depends(get_degradation_service),
) -> ModelListResponse:
    models = await degradation.get_models_with_fallback()
    if type is not None:
        models = [model for model in models if model.type == type.value]
    if loaded_only:
        models = [model for model in models if model.is_loaded]
    return ModelListResponse(models=models, count=len(models))


@router.get(
    "/{model_id:path}",
    response_model=Model,
    summary="Get one model",
    responses={404: {"description": "Model not found"}},
)
async def get_model(
    model_id: str,
    client: LocalLLMClient = Depends(get_llm_client),
) -> Model:
    return await client.get_model(model_id)
