"""
FastAPI API routes and endpoints.

- routes_system.py: health, status, connectivity, feature toggles, notifications, guidance
- routes_models.py: model listing (GET /models, GET /models/{id})
- routes_chat.py: chat sessions, replies and SSE streaming
- routes_generation.py: completions, embeddings, code assist
- routes_ws.py: WebSocket chat protocol (WS /ws/chat)
- dependencies.py: singleton wiring of client, degradation, guidance and chat
- models.py: API-specific request/response and WebSocket message models
- error_handlers.py: error taxonomy to HTTP mapping
"""

from local_llm.api import dependencies, error_handlers, models
from local_llm.api.routes_chat import router as chat_router
from local_llm.api.routes_generation import router as generation_router
from local_llm.api.routes_models import router as models_router
from local_llm.api.routes_system import router as system_router
from local_llm.api.routes_ws import router as ws_router

__all__ = [
    "system_router",
    "models_router",
    "chat_router",
    "generation_router",
    "ws_router",
    "dependencies",
    "error_handlers",
    "models",
]
