# adaptive_chat/prompt_builder.py

from typing import Optional

from adaptive_chat.base_utils import BaseUtils
from adaptive_chat.learning_store import LearningContext
from adaptive_chat.prompts import (
    NEGATIVE_PATTERNS_CLAUSE,
    POSITIVE_PATTERNS_CLAUSE,
    RATING_CLAUSE,
    get_mode_template,
)


class SystemPromptBuilder(BaseUtils):
    """
    Renders the system instruction for a mode, biased by the learning context.
    Deterministic: no I/O, no randomness.
    """

    def build_system_prompt(self, mode, learning_context: Optional[LearningContext]) -> str:
        prompt = get_mode_template(mode).instructions
        if learning_context is None:
            return prompt

        if learning_context.positive_patterns:
            prompt += self.unsafe_string_format(
                POSITIVE_PATTERNS_CLAUSE,
                patterns=", ".join(learning_context.positive_patterns),
            )

        if learning_context.negative_patterns:
            prompt += self.unsafe_string_format(
                NEGATIVE_PATTERNS_CLAUSE,
                patterns=", ".join(learning_context.negative_patterns),
            )

        if learning_context.average_rating > 0:
            prompt += self.unsafe_string_format(
                RATING_CLAUSE,
                rating=round(learning_context.average_rating),
            )

        return prompt


_BUILDER = SystemPromptBuilder()


def build_system_prompt(mode, learning_context: Optional[LearningContext]) -> str:
    return _BUILDER.build_system_prompt(mode, learning_context)
