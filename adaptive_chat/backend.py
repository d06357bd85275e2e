# adaptive_chat/backend.py

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from adaptive_chat.base_utils import BaseUtils
from adaptive_chat.chat_store import ChatStore
from adaptive_chat.db_helpers import create_session_factory
from adaptive_chat.errors import DuplicateFeedback, PersistenceError
from adaptive_chat.learning_store import DEFAULT_LEARNING_STYLE, LearningContextStore
from adaptive_chat.learning_updater import LearningContextUpdater
from adaptive_chat.llm_client import BaseProvider, ProviderId, get_provider
from adaptive_chat.mode_router import ModeRouter
from adaptive_chat.pattern_extractor import FeedbackRating
from adaptive_chat.prompts import API_KEY_PROBE_MESSAGE, Mode
from adaptive_chat.settings import Settings, get_settings

logger = logging.getLogger("adaptive_chat")


class Backend(BaseUtils):
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        provider_factory: Callable[..., BaseProvider] = get_provider,
    ):
        self.settings = settings or get_settings()
        self.SessionFactory = session_factory or create_session_factory()

        self.chat_store = ChatStore(self.SessionFactory)
        self.learning_store = LearningContextStore(self.SessionFactory, self.settings.learning)
        self.updater = LearningContextUpdater(self.learning_store, self.settings.learning)
        self.router = ModeRouter(
            learning_store=self.learning_store,
            chat_store=self.chat_store,
            settings=self.settings,
            provider_factory=provider_factory,
        )

    # -----------------------
    # Core operations
    # -----------------------

    def generate_reply(self, user_message: str, mode: str, api_key: str, history,
                       provider=ProviderId.GEMINI) -> dict:
        reply = self.router.route(mode, user_message, history, api_key, provider=provider)

        # usage stats must not cost the user a reply that already succeeded
        try:
            self.updater.record_mode_usage(reply.mode)
        except PersistenceError as e:
            self.color_print(f"generate_reply(): could not record mode usage -> {e}", color="yellow")

        return {
            "content": reply.content,
            "confidence": reply.confidence,
            "suggestions": reply.suggestions,
            "mode": reply.mode,
        }

    def record_feedback(self, message_id: int, rating, message_content: Optional[str] = None) -> None:
        """
        Append the feedback event and fold it into the learning context,
        both in one transaction. A second event on the same message is rejected.
        """
        rating = FeedbackRating.parse(rating)
        message = self.chat_store.get_message(message_id)
        if message_content is None:
            message_content = message["content"]

        if self.chat_store.feedback_exists(message_id):
            raise DuplicateFeedback(f"Feedback already recorded for message {message_id}")

        self.updater.record_feedback(
            rating,
            message_content,
            on_same_transaction=lambda session: self.chat_store.add_feedback(session, message_id, rating.value),
        )

    def get_learning_stats(self) -> dict:
        context = self.learning_store.get()
        total_conversations = self.chat_store.count_conversations()

        if context is None:
            return {
                "totalConversations": total_conversations,
                "positiveRating": 0,
                "totalFeedback": 0,
                "topicKeywords": [],
                "preferredModes": [],
                "learningStyle": DEFAULT_LEARNING_STYLE,
            }

        return {
            "totalConversations": total_conversations,
            "positiveRating": round(context.average_rating),
            "totalFeedback": context.total_feedback,
            "topicKeywords": list(context.topic_keywords),
            "preferredModes": [mode for mode, _ in Counter(context.preferred_modes).most_common()],
            "learningStyle": context.learning_style,
        }

    # -----------------------
    # Conversation plumbing
    # -----------------------

    def create_conversation(self, title: str, mode: str = "general") -> dict:
        return self.chat_store.create_conversation(title, Mode.parse(mode).value)

    def list_conversations(self) -> list:
        return self.chat_store.list_conversations()

    def get_messages(self, conversation_id: int) -> list:
        return self.chat_store.get_messages(conversation_id)

    def send_message(self, conversation_id: int, content: str, mode: str = "general",
                     model: str = "gemini", api_key: str = "") -> dict:
        content = (content or "").strip()
        if not content:
            raise ValueError("Message content is required")
        mode = Mode.parse(mode).value

        history = [
            {"role": m["role"], "content": m["content"]}
            for m in self.chat_store.get_messages(conversation_id)
        ]
        user_message = self.chat_store.create_message(conversation_id, "user", content, model=model, mode=mode)

        reply = self.generate_reply(content, mode, api_key, history, provider=model)

        ai_message = self.chat_store.create_message(
            conversation_id, "assistant", reply["content"], model=model, mode=reply["mode"],
        )
        self.chat_store.touch_conversation(conversation_id, reply["mode"])

        followups = []
        if self.settings.suggestions_enabled:
            followups = self.router.generate_suggestions(
                conversation_id, content, reply["mode"], api_key, provider=model,
            )

        return {
            "userMessage": user_message,
            "aiMessage": ai_message,
            "confidence": reply["confidence"],
            "suggestions": reply["suggestions"],
            "followups": followups,
            "mode": reply["mode"],
        }

    def test_api_key(self, api_key: str, model: str = "gemini") -> dict:
        self.router.route(Mode.GENERAL, API_KEY_PROBE_MESSAGE, [], api_key, provider=model)
        return {"valid": True, "message": "API key is valid"}

    def list_suggestions(self, conversation_id: int) -> list:
        return self.chat_store.list_suggestions(conversation_id)

    def mark_suggestion_used(self, suggestion_id: int) -> None:
        self.chat_store.mark_suggestion_used(suggestion_id)

    def search_conversations(self, query: str) -> list:
        return self.chat_store.search_conversations(query)

    def export_conversation(self, conversation_id: int) -> dict:
        return {
            "conversation": self.chat_store.get_conversation(conversation_id),
            "messages": self.chat_store.get_messages(conversation_id),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }

    def clear_learning(self) -> None:
        self.learning_store.reset()
        logger.info("[learning] learning context cleared")
