# adaptive_chat/learning_updater.py

import logging
from dataclasses import replace
from typing import Callable, Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from adaptive_chat.learning_store import LearningContext, LearningContextStore
from adaptive_chat.pattern_extractor import FeedbackRating, derive_patterns, extract_keywords
from adaptive_chat.settings import LearningLimits

logger = logging.getLogger("adaptive_chat")

# Percentage scale: every positive event scores 100, every negative 0.
POSITIVE_POINT = 100.0
NEGATIVE_POINT = 0.0


def merge_capped(existing: Sequence[str], incoming: Iterable[str], cap: int) -> Tuple[str, ...]:
    """
    Order-preserving union (first occurrence wins), then keep the last `cap`.
    """
    merged = list(dict.fromkeys([*existing, *incoming]))
    return tuple(merged[-cap:]) if cap > 0 else ()


def running_average(old_average: float, count: int, point: float) -> float:
    return (old_average * count + point) / (count + 1)


def fold_feedback(
    context: LearningContext,
    rating: FeedbackRating,
    content: str,
    limits: LearningLimits,
) -> LearningContext:
    positive = rating == FeedbackRating.POSITIVE
    keywords = extract_keywords(content, limit=limits.keywords_per_message)
    patterns = derive_patterns(content, positive)

    updates = {
        "topic_keywords": merge_capped(context.topic_keywords, keywords, limits.keyword_cap),
        "average_rating": running_average(
            context.average_rating,
            context.total_feedback,
            POSITIVE_POINT if positive else NEGATIVE_POINT,
        ),
        "total_feedback": context.total_feedback + 1,
    }
    if positive:
        updates["positive_patterns"] = merge_capped(context.positive_patterns, patterns, limits.pattern_cap)
    else:
        updates["negative_patterns"] = merge_capped(context.negative_patterns, patterns, limits.pattern_cap)

    return replace(context, **updates)


def append_mode_usage(context: LearningContext, mode: str, cap: int) -> LearningContext:
    modes = list(context.preferred_modes) + [mode]
    return replace(context, preferred_modes=tuple(modes[-cap:]))


class LearningContextUpdater:
    def __init__(self, store: LearningContextStore, limits: LearningLimits):
        self.store = store
        self.limits = limits

    def record_feedback(
        self,
        rating,
        message_content: str,
        on_same_transaction: Optional[Callable[[Session], None]] = None,
    ) -> LearningContext:
        rating = FeedbackRating.parse(rating)
        updated = self.store.apply(
            lambda ctx: fold_feedback(ctx, rating, message_content or "", self.limits),
            on_same_transaction=on_same_transaction,
        )
        logger.info(
            "[learning] %s feedback folded: total=%s average=%.1f",
            rating.value, updated.total_feedback, updated.average_rating,
        )
        return updated

    def record_mode_usage(self, mode: str) -> LearningContext:
        return self.store.apply(
            lambda ctx: append_mode_usage(ctx, mode, self.limits.preferred_modes_cap)
        )
