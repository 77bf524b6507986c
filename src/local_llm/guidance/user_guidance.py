"""
Troubleshooting guidance for common failure scenarios.

Guidance entries are keyed by error code (CONNECTION_REFUSED, TIMEOUT, ...)
or by scenario name (setup_first_time, performance_tips). Error guidance is
shown at most once per key within the cooldown window so a flapping server
does not flood the user.
"""

import time
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from local_llm.guidance.notifier import NotificationCenter
from local_llm.models.enums import GuidanceType, NotificationLevel


logger = structlog.get_logger(__name__)

ActionCallback = Callable[[str], Awaitable[None]]


class GuidanceSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    items: List[str] = Field(default_factory=list)


class Guidance(BaseModel):
    """One guidance entry: headline plus optional steps, causes and sections."""
    model_config = ConfigDict(frozen=True)

    type: GuidanceType = Field(..., description="Kind of guidance")
    title: str = Field(..., description="Headline")
    message: str = Field(..., description="Short explanation")
    steps: List[str] = Field(default_factory=list, description="Ordered fix steps")
    items: List[str] = Field(default_factory=list, description="Possible causes")
    sections: List[GuidanceSection] = Field(default_factory=list, description="Grouped tips")
    actions: List[str] = Field(default_factory=list, description="Action labels")

    def summary(self) -> str:
        return f"{self.title}: {self.message}"


_LEVELS = {
    GuidanceType.QUICK_FIX: NotificationLevel.WARNING,
    GuidanceType.TROUBLESHOOTING: NotificationLevel.WARNING,
    GuidanceType.TUTORIAL: NotificationLevel.INFO,
    GuidanceType.CONFIGURATION: NotificationLevel.INFO,
}


def _build_database() -> Dict[str, Guidance]:
    return {
        "CONNECTION_REFUSED": Guidance(
            type=GuidanceType.QUICK_FIX,
            title="Cannot Connect to AI Server",
            message="The inference server refused the connection. Here's how to fix it:",
            steps=[
                "Make sure your AI server is running on your computer",
                "Enable its local server (in LM Studio: the \"Server\" tab)",
                "Click \"Start Server\" if it's not already running",
                "Verify the server URL and port (default http://localhost:1234)",
            ],
            actions=["Check Settings", "Retry Connection"],
        ),
        "TIMEOUT": Guidance(
            type=GuidanceType.TROUBLESHOOTING,
            title="Connection Timeout",
            message="The connection to your AI server timed out. This might be due to:",
            items=[
                "AI server is overloaded",
                "Network connectivity issues",
                "Firewall blocking the connection",
                "Your AI server is processing a large model",
            ],
            actions=["Retry", "Check Settings"],
        ),
        "MODEL_NOT_FOUND": Guidance(
            type=GuidanceType.QUICK_FIX,
            title="Model Not Found",
            message="The selected model was not found in your AI server.",
            steps=[
                "Check if the model is still available in your AI server",
                "Refresh the model list to get the latest models",
                "Select a different model if the current one was removed",
            ],
            actions=["Refresh Models", "Select Model"],
        ),
        "MODEL_NOT_LOADED": Guidance(
            type=GuidanceType.QUICK_FIX,
            title="Model Not Loaded",
            message="The selected model is not currently loaded in your AI server.",
            steps=[
                "Open your AI server",
                "Select and load the model you want to use",
                "Wait for the model to finish loading",
            ],
            actions=["Refresh Models", "Select Different Model"],
        ),
        "MODEL_LOAD_FAILED": Guidance(
            type=GuidanceType.TROUBLESHOOTING,
            title="Model Failed to Load",
            message="The model could not be loaded. Common causes:",
            items=[
                "Insufficient system memory (RAM)",
                "Model file is corrupted",
                "Incompatible model format",
                "System resources are exhausted",
            ],
            steps=[
                "Close other applications to free memory",
                "Try loading a smaller model",
                "Restart your AI server",
                "Check available disk space",
            ],
            actions=["Select Smaller Model", "Refresh Models"],
        ),
        "SERVER_ERROR": Guidance(
            type=GuidanceType.TROUBLESHOOTING,
            title="Inference Server Error",
            message="The inference server encountered an internal error.",
            steps=[
                "Wait a moment and try again",
                "Check the server logs for error details",
                "Restart your AI server if the problem persists",
                "Update your AI server to the latest version",
            ],
            actions=["Retry", "Check Settings"],
        ),
        "setup_first_time": Guidance(
            type=GuidanceType.TUTORIAL,
            title="First Time Setup",
            message="Welcome! Let's set up local AI server integration.",
            steps=[
                "Install a local AI server (LM Studio, Ollama, etc.)",
                "Download a model",
                "Start the local server in your AI server",
                "The service will connect automatically",
            ],
            actions=["Setup Guide", "Test Connection"],
        ),
        "performance_tips": Guidance(
            type=GuidanceType.CONFIGURATION,
            title="Performance Tips",
            message="Optimize your local AI experience:",
            sections=[
                GuidanceSection(
                    title="Model Selection",
                    items=[
                        "Use quantized models (Q4, Q5) for better performance",
                        "Smaller models respond faster",
                        "Consider your available RAM when choosing models",
                    ],
                ),
                GuidanceSection(
                    title="Settings Optimization",
                    items=[
                        "Lower temperature for more consistent responses",
                        "Reduce max tokens for faster responses",
                        "Adjust timeout settings based on your hardware",
                    ],
                ),
            ],
            actions=["Open Settings", "Select Model"],
        ),
    }


SETUP_GUIDANCE = Guidance(
    type=GuidanceType.TUTORIAL,
    title="Welcome to Local LLM Companion",
    message="Let's get you set up with local AI server integration.",
    steps=[
        "Download and install a local AI server (LM Studio, Ollama, etc.)",
        "Launch your AI server and download a model",
        "Enable the local server",
        "The service will automatically connect to http://localhost:1234",
    ],
    actions=["Setup Guide", "Check Settings"],
)

TROUBLESHOOTING_GUIDE = Guidance(
    type=GuidanceType.TROUBLESHOOTING,
    title="Local LLM Troubleshooting Guide",
    message="Common issues and solutions:",
    sections=[
        GuidanceSection(
            title="Connection Issues",
            items=[
                "Ensure your AI server is running",
                "Check that the local server is enabled",
                "Verify the server URL in settings",
                "Check firewall settings",
            ],
        ),
        GuidanceSection(
            title="Model Issues",
            items=[
                "Make sure a model is loaded in your AI server",
                "Check available system memory",
                "Try a smaller model if loading fails",
                "Refresh the model list",
            ],
        ),
        GuidanceSection(
            title="Performance Issues",
            items=[
                "Close other applications to free memory",
                "Use a quantized model for better performance",
                "Adjust temperature and token limits",
                "Check system resources",
            ],
        ),
    ],
    actions=["Check Settings", "Refresh Models", "Test Connection"],
)


def render_details(guidance: Guidance) -> str:
    """Markdown rendering of a guidance entry."""
    lines = [f"# {guidance.title}", "", guidance.message]

    if guidance.items:
        lines.append("")
        lines.extend(f"- {item}" for item in guidance.items)

    if guidance.steps:
        lines.extend(["", "## Steps"])
        lines.extend(f"{number}. {step}" for number, step in enumerate(guidance.steps, start=1))

    for section in guidance.sections:
        lines.extend(["", f"## {section.title}"])
        lines.extend(f"- {item}" for item in section.items)

    return "\n".join(lines)


class UserGuidanceSystem:
    """Looks up guidance for errors and scenarios and shows it via the notifier."""

    def __init__(
        self,
        notifier: NotificationCenter,
        cooldown_seconds: float = 300.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.notifier = notifier
        self.cooldown_seconds = cooldown_seconds
        self._enabled = enabled
        self._clock = clock
        self._database = _build_database()
        self._shown: Dict[str, float] = {}

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def get_guidance(self, key: str) -> Optional[Guidance]:
        return self._database.get(key)

    @staticmethod
    def guidance_key(error: BaseException) -> str:
        """Code first, then category, then the exception class name."""
        code = getattr(error, "code", None)
        if code:
            return str(code)
        category = getattr(error, "category", None)
        if category:
            return getattr(category, "value", str(category))
        return type(error).__name__

    async def show_error_guidance(
        self, error: BaseException, on_action: Optional[ActionCallback] = None
    ) -> bool:
        """
        Show guidance for `error` unless it was shown within the cooldown.

        Args:
            error: Error to find guidance for
            on_action: Awaited with the action label the user picked, if any

        Returns:
            True if guidance was shown
        """
        if not self._enabled:
            return False

        key = self.guidance_key(error)
        guidance = self._database.get(key)
        if guidance is None:
            logger.debug("No guidance available for error", key=key)
            return False

        now = self._clock()
        shown_at = self._shown.get(key)
        if shown_at is not None and now - shown_at < self.cooldown_seconds:
            logger.debug("Guidance recently shown, skipping", key=key)
            return False

        self._shown[key] = now
        choice = await self._display(guidance)
        if choice is not None and on_action is not None:
            await on_action(choice)
        return True

    async def show_scenario_guidance(self, scenario: str) -> bool:
        if not self._enabled:
            return False
        guidance = self._database.get(scenario)
        if guidance is None:
            logger.debug("No guidance available for scenario", scenario=scenario)
            return False
        await self._display(guidance)
        return True

    async def show_setup_guidance(self) -> Guidance:
        await self._display(SETUP_GUIDANCE)
        return SETUP_GUIDANCE

    async def show_troubleshooting_guide(self, category: Optional[str] = None) -> Guidance:
        """Category-specific guide when one exists, otherwise the general guide."""
        guidance = self._database.get(f"troubleshooting_{category}") if category else None
        guidance = guidance or TROUBLESHOOTING_GUIDE
        await self._display(guidance)
        return guidance

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("User guidance toggled", enabled=enabled)

    def clear_shown_guidance(self) -> None:
        self._shown.clear()

    async def _display(self, guidance: Guidance) -> Optional[str]:
        return await self.notifier.notify(
            _LEVELS.get(guidance.type, NotificationLevel.INFO),
            guidance.summary(),
            actions=guidance.actions,
            details={"guidance": guidance.model_dump(mode="json"), "markdown": render_details(guidance)},
        )
