"""
Unit tests for Local LLM Companion.

Test individual components in isolation:
- Error taxonomy, backoff and SSE parsing
- LocalLLMClient against httpx.MockTransport
- Degradation state machine, retry scheduler and connection monitor
- Error handler, notifications and user guidance
- Chat sessions and chat service
- API models, WebSocket protocol and dependency wiring
"""
