"""
Prompt builder for chat and code-assist requests.

Responsible for:
- Loading and rendering Jinja2 templates for the code-assist actions
- Assembling chat message lists (system prompt + recent history + new turn)
- Building the text completion prompt for code generation
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union

import structlog
from jinja2 import Environment, FileSystemLoader

from local_llm.llm.exceptions import LLMValidationError
from local_llm.models.api_models import ChatMessage
from local_llm.models.enums import MessageRole


logger = structlog.get_logger(__name__)

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "prompts"
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant for software development."

ASSIST_ACTIONS = ("explain", "improve", "generate")


class PromptBuilder:
    """
    Build message lists and prompts sent to the inference server.

    Chat history is windowed to the last `history_limit` user/assistant
    turns; system messages stored in history are never resent.
    """

    def __init__(
        self,
        templates_dir: Optional[Union[str, Path]] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_limit: int = 10,
    ):
        """
        Args:
            templates_dir: Directory containing the *.j2 templates (default: packaged)
            system_prompt: System prompt prepended to chat requests ("" to omit)
            history_limit: Previous messages sent with each chat request
        """
        self.templates_dir = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
        self.system_prompt = system_prompt
        self.history_limit = history_limit

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False  # Prompts, not HTML
        )

        try:
            self.system_template = self.jinja_env.get_template("code_assistant_system.j2")
            self.explain_template = self.jinja_env.get_template("explain_code.j2")
            self.improve_template = self.jinja_env.get_template("improve_code.j2")
            self.generate_template = self.jinja_env.get_template("generate_code.j2")
        except Exception as e:
            logger.error("Failed to load prompt templates", error=str(e), templates_dir=str(self.templates_dir))
            raise

        logger.info(
            "PromptBuilder initialized",
            templates_dir=str(self.templates_dir),
            history_limit=history_limit,
        )

    def build_chat_messages(
        self,
        history: Sequence[ChatMessage],
        user_message: str,
        system_prompt: Optional[str] = None,
    ) -> List[ChatMessage]:
        """
        Messages for a chat request: system prompt, the most recent history
        turns, then the new user message.
        """
        system_prompt = self.system_prompt if system_prompt is None else system_prompt
        messages: List[ChatMessage] = []
        if system_prompt:
            messages.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))

        turns = [m for m in history if m.role != MessageRole.SYSTEM]
        if self.history_limit:
            messages.extend(turns[-self.history_limit:])

        messages.append(ChatMessage(role=MessageRole.USER, content=user_message))
        return messages

    def build_assist_messages(self, action: str, code: str, language: str = "text") -> List[ChatMessage]:
        """System + user messages for the explain and improve actions."""
        if action == "explain":
            template = self.explain_template
        elif action == "improve":
            template = self.improve_template
        else:
            raise LLMValidationError(
                f"Unsupported assist action for chat: {action}",
                "INVALID_ASSIST_ACTION",
                field="action",
                value=action,
            )
        if not code or not code.strip():
            raise LLMValidationError("No code provided", "EMPTY_MESSAGE_CONTENT", field="code")

        return [
            ChatMessage(role=MessageRole.SYSTEM, content=self.system_template.render(focus=action).strip()),
            ChatMessage(role=MessageRole.USER, content=template.render(language=language, code=code)),
        ]

    def build_generate_prompt(self, request: str, language: str = "text") -> str:
        """Text completion prompt asking for code matching `request`."""
        if not request or not request.strip():
            raise LLMValidationError("Describe the code to generate", "EMPTY_PROMPT", field="request")
        return self.generate_template.render(language=language, request=request)
