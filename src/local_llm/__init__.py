"""
Local LLM Companion.

Resilient client and chat service for local OpenAI-compatible inference
servers (LM Studio, Ollama, llama.cpp server, ...):
- Typed HTTP client with retry, backoff and error classification
- SSE streaming for chat completions
- Per-feature graceful degradation with fallback strategies
- Error recovery, user guidance and chat sessions exposed over FastAPI

Architecture: FastAPI host + httpx client + in-memory resilience layer
"""

__version__ = "0.1.0"
