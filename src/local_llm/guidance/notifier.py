"""
User-facing notification sink.

Stands in for editor pop-ups: every notification is logged, kept in a
bounded history served by the API, and optionally passed to an action
resolver (e.g. a connected chat client) that can pick one of the offered
actions.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from local_llm.models.enums import NotificationLevel


logger = structlog.get_logger(__name__)


class Notification(BaseModel):
    """A message shown to the user, with optional action labels."""

    level: NotificationLevel = Field(..., description="Severity")
    message: str = Field(..., description="Text shown to the user")
    actions: List[str] = Field(default_factory=list, description="Action labels offered")
    details: Dict[str, Any] = Field(default_factory=dict, description="Structured context")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


ActionResolver = Callable[[Notification], Awaitable[Optional[str]]]


class NotificationCenter:
    """Keeps the last `history_size` notifications and logs each one."""

    def __init__(self, history_size: int = 50, action_resolver: Optional[ActionResolver] = None):
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._action_resolver = action_resolver

    def set_action_resolver(self, resolver: Optional[ActionResolver]) -> None:
        self._action_resolver = resolver

    async def notify(
        self,
        level: NotificationLevel,
        message: str,
        actions: Sequence[str] = (),
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Record a notification.

        Returns:
            The action label chosen by the resolver, or None when no
            resolver is set, no actions were offered or none was chosen
        """
        notification = Notification(
            level=level, message=message, actions=list(actions), details=details or {}
        )

        if level != NotificationLevel.SILENT:
            self._history.append(notification)

        if level == NotificationLevel.ERROR:
            logger.error("Notification", message=message, actions=list(actions))
        elif level == NotificationLevel.WARNING:
            logger.warning("Notification", message=message, actions=list(actions))
        elif level == NotificationLevel.SILENT:
            logger.debug("Notification", message=message)
        else:
            logger.info("Notification", message=message, level=level.value, actions=list(actions))

        if not actions or self._action_resolver is None:
            return None

        choice = await self._action_resolver(notification)
        if choice is not None and choice not in notification.actions:
            logger.warning("Ignoring unknown notification action", action=choice)
            return None
        return choice

    def recent(self, limit: Optional[int] = None) -> List[Notification]:
        """Newest first."""
        items = list(reversed(self._history))
        return items[:limit] if limit is not None else items

    def clear(self) -> None:
        self._history.clear()
