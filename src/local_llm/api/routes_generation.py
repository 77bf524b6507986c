"""
Generation routes: text completion, embeddings and code-assist actions.

All calls go through the degradation layer; a stand-in result is flagged
with `degraded: true`.
"""

import structlog
from fastapi import APIRouter, Depends

from local_llm.api.dependencies import get_chat_service, get_degradation_service, get_settings
from local_llm.api.models import (
    AssistRequest,
    AssistResponse,
    CompletionApiRequest,
    CompletionApiResponse,
    EmbeddingApiRequest,
    EmbeddingApiResponse,
)
from local_llm.chat.service import FALLBACK_FINISH_REASON, ChatService
from local_llm.config import Settings
from local_llm.llm.exceptions import LLMModelError
from local_llm.models.api_models import CompletionRequest, EmbeddingRequest
from local_llm.resilience.degradation import GracefulDegradationService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/completions",
    response_model=CompletionApiResponse,
    summary="Text completion",
    responses={400: {"description": "Invalid request"}, 409: {"description": "No usable model"}},
)
async def create_completion(
    body: CompletionApiRequest,
    chat_service: ChatService = Depends(get_chat_service),
    degradation: GracefulDegradationService = Depends(get_degradation_service),
    settings: Settings = Depends(get_settings),
) -> CompletionApiResponse:
    model = await chat_service.resolve_model(body.model)
    request = CompletionRequest(
        model=model,
        prompt=body.prompt,
        temperature=settings.COMPLETION_TEMPERATURE if body.temperature is None else body.temperature,
        max_tokens=settings.COMPLETION_MAX_TOKENS if body.max_tokens is None else body.max_tokens,
        stop=settings.COMPLETION_STOP_SEQUENCES if body.stop is None else body.stop,
    )
    response = await degradation.text_completion_with_fallback(request)
    finish_reason = response.choices[0].finish_reason if response.choices else None

    return CompletionApiResponse(
        model=model,
        text=response.text,
        degraded=finish_reason == FALLBACK_FINISH_REASON,
        usage=response.usage,
    )


@router.post(
    "/embeddings",
    response_model=EmbeddingApiResponse,
    summary="Generate embeddings",
    responses={400: {"description": "Invalid input"}, 409: {"description": "No embedding model"}},
)
async def create_embeddings(
    body: EmbeddingApiRequest,
    degradation: GracefulDegradationService = Depends(get_degradation_service),
) -> EmbeddingApiResponse:
    model = body.model
    if not model:
        models = await degradation.get_models_with_fallback()
        model = next((m.id for m in models if m.supports_embeddings and m.is_loaded), None)
    if not model:
        raise LLMModelError("No embedding model is available", "NO_EMBEDDING_MODEL")

    response = await degradation.generate_embeddings_with_fallback(EmbeddingRequest(model=model, input=body.input))
    logger.info("Embeddings generated", model=model, vectors=len(response.data))

    return EmbeddingApiResponse(
        model=model,
        embeddings=response.embeddings,
        degraded=not response.data,
        usage=response.usage,
    )


@router.post(
    "/assist/{action}",
    response_model=AssistResponse,
    summary="Code assist (explain, improve, generate)",
    responses={400: {"description": "Unknown action or empty code"}},
)
async def assist(
    action: str,
    body: AssistRequest,
    chat_service: ChatService = Depends(get_chat_service),
) -> AssistResponse:
    content = await chat_service.assist(action, body.code, language=body.language, model=body.model)
    return AssistResponse(action=action, content=content)
