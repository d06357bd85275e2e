# adaptive_chat/mode_router.py

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from adaptive_chat.base_utils import BaseUtils
from adaptive_chat.chat_store import ChatStore
from adaptive_chat.learning_store import LearningContext, LearningContextStore
from adaptive_chat.llm_client import (
    BaseProvider,
    ModelParams,
    get_provider,
    history_to_messages,
    trim_history,
)
from adaptive_chat.prompt_builder import SystemPromptBuilder
from adaptive_chat.prompts import FOLLOWUP_PROMPT, SUGGESTIONS_SYSTEM_PROMPT, get_mode_template
from adaptive_chat.settings import Settings, get_settings

logger = logging.getLogger("adaptive_chat")

_LIST_PREFIX = re.compile(r"^\s*(?:\d+\s*[.)]|[-*•])\s*")

SUGGESTION_PARAMS = ModelParams(temperature=0.7, max_output_tokens=300)


@dataclass
class ModeReply:
    content: str
    suggestions: List[str]
    confidence: float
    mode: str
    usage: Dict[str, int] = field(default_factory=dict)


def parse_suggestion_lines(text: str, count: int) -> List[str]:
    out: List[str] = []
    for line in (text or "").splitlines():
        line = _LIST_PREFIX.sub("", line).strip()
        if not line:
            continue
        out.append(line)
        if len(out) >= count:
            break
    return out


class ModeRouter(BaseUtils):
    """
    Picks the mode template, renders the learning-aware system prompt,
    trims history to the mode's window and calls the provider.

    Confidence and suggestions come from the template, never from the model.
    """

    def __init__(
        self,
        learning_store: Optional[LearningContextStore] = None,
        chat_store: Optional[ChatStore] = None,
        settings: Optional[Settings] = None,
        provider_factory: Callable[..., BaseProvider] = get_provider,
    ):
        self.learning_store = learning_store
        self.chat_store = chat_store
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory
        self.prompt_builder = SystemPromptBuilder()

    def _resolve_provider(self, provider) -> BaseProvider:
        # an adapter instance, or a provider id / model name to build one from
        if provider is not None and not isinstance(provider, str):
            return provider
        return self.provider_factory(provider, self.settings)

    def _current_learning_context(self) -> Optional[LearningContext]:
        if self.learning_store is None:
            return None
        return self.learning_store.get()

    def route(
        self,
        mode,
        user_message: str,
        history,
        api_key: str,
        provider=None,
        learning_context: Optional[LearningContext] = None,
    ) -> ModeReply:
        template = get_mode_template(mode)
        backend = self._resolve_provider(provider)

        if learning_context is None:
            learning_context = self._current_learning_context()

        system_prompt = self.prompt_builder.build_system_prompt(template.mode, learning_context)
        trimmed = trim_history(history_to_messages(history), template.history_window)

        reply = backend.generate(
            system_prompt,
            trimmed,
            api_key,
            ModelParams(
                temperature=template.temperature,
                max_output_tokens=template.max_output_tokens,
            ),
            user_message=user_message,
        )

        return ModeReply(
            content=reply.text or template.fallback_reply,
            suggestions=list(template.suggestions),
            confidence=template.confidence,
            mode=template.mode.value,
            usage=reply.usage,
        )

    def generate_suggestions(
        self,
        conversation_id: Optional[int],
        last_message: str,
        mode,
        api_key: str,
        provider=None,
    ) -> List[str]:
        """
        Ask the model for follow-up questions and store them as unused suggestions.
        Non-essential: every failure degrades to [].
        """
        try:
            template = get_mode_template(mode)
            backend = self._resolve_provider(provider)
            count = self.settings.suggestions_count

            prompt = self.unsafe_string_format(
                FOLLOWUP_PROMPT,
                last_message=last_message,
                count=count,
                focus=template.followup_focus,
            )
            reply = backend.generate(
                SUGGESTIONS_SYSTEM_PROMPT,
                [],
                api_key,
                SUGGESTION_PARAMS,
                user_message=prompt,
            )
            suggestions = parse_suggestion_lines(self.clean_triple_backticks(reply.text), count)

            if suggestions and self.chat_store is not None and conversation_id is not None:
                self.chat_store.create_suggestions(conversation_id, suggestions)

            return suggestions
        except Exception as e:
            self.color_print(f"generate_suggestions(): degraded to no suggestions -> {e}", color="yellow")
            return []
