"""
Chat sessions and orchestration.

- session.py: in-memory sessions with JSON export/import
- service.py: ChatService (model resolution, history window, streaming, code assist)
"""

from local_llm.chat.session import ChatSession, ChatSessionStore
from local_llm.chat.service import ChatReply, ChatService

__all__ = [
    "ChatSession",
    "ChatSessionStore",
    "ChatReply",
    "ChatService",
]
