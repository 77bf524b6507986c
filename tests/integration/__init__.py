"""
Integration tests for Local LLM Companion.

Test components together or against a real inference server:
- API endpoints, SSE and WebSocket (FastAPI TestClient, mocked client)
- LocalLLMClient against a local server (skipped when unreachable)
"""
