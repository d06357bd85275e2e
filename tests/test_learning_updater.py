import threading

import pytest

from adaptive_chat.learning_store import LearningContext, LearningContextStore
from adaptive_chat.learning_updater import (
    LearningContextUpdater,
    fold_feedback,
    merge_capped,
    running_average,
)
from adaptive_chat.pattern_extractor import FeedbackRating
from adaptive_chat.settings import LearningLimits


def test_merge_capped_keeps_first_occurrence_and_drops_oldest():
    assert merge_capped(("a", "b"), ["b", "c"], cap=5) == ("a", "b", "c")
    assert merge_capped(("a", "b", "c"), ["d", "e"], cap=3) == ("c", "d", "e")
    assert merge_capped(("a",), ["b"], cap=0) == ()


def test_running_average():
    assert running_average(0.0, 0, 100.0) == 100.0
    assert running_average(100.0, 1, 0.0) == 50.0
    assert running_average(50.0, 2, 100.0) == pytest.approx(66.6667, rel=1e-4)


def test_fold_is_pure(limits):
    before = LearningContext()
    after = fold_feedback(before, FeedbackRating.POSITIVE, "Let me explain recursion", limits)

    assert before == LearningContext()
    assert after.total_feedback == 1
    assert after.positive_patterns == ("provide clear explanations",)
    assert after.negative_patterns == ()


def test_first_positive_then_negative_on_empty_text(updater, learning_store):
    first = updater.record_feedback("positive", "")
    assert first.total_feedback == 1
    assert first.average_rating == 100.0
    assert first.topic_keywords == ()
    assert first.positive_patterns == ()

    second = updater.record_feedback("negative", "")
    assert second.total_feedback == 2
    assert second.average_rating == 50.0
    assert second.negative_patterns == ()

    stored = learning_store.get()
    assert stored.total_feedback == 2
    assert stored.average_rating == 50.0
    assert stored.version == 2


def test_positive_long_explanation_scenario(updater):
    content = "Can you explain this with an example? " + "x" * 250

    context = updater.record_feedback(FeedbackRating.POSITIVE, content)

    assert "provide clear explanations" in context.positive_patterns
    assert "include relevant examples" in context.positive_patterns
    assert "provide detailed responses" in context.positive_patterns
    assert "explain" in context.topic_keywords
    assert "example" in context.topic_keywords
    assert context.average_rating == 100.0


def test_short_negative_is_recorded_as_brief(updater):
    context = updater.record_feedback("negative", "That is possibly right.")

    assert context.negative_patterns == (
        "avoid overly brief responses",
        "be more definitive when possible",
    )
    assert context.positive_patterns == ()
    assert context.average_rating == 0.0


def test_caps_are_never_exceeded(session_factory):
    limits = LearningLimits(pattern_cap=2, keyword_cap=3, keywords_per_message=10)
    updater = LearningContextUpdater(LearningContextStore(session_factory, limits), limits)

    updater.record_feedback("positive", "alpha bravo charlie")
    context = updater.record_feedback("positive", "delta echoes foxtrot explain example step " + "y" * 210)

    assert len(context.topic_keywords) <= 3
    assert len(context.positive_patterns) <= 2
    assert context.positive_patterns == ("break down into steps", "provide detailed responses")
    assert "alpha" not in context.topic_keywords


def test_duplicate_keywords_are_not_repeated(updater):
    updater.record_feedback("positive", "recursion explained")
    context = updater.record_feedback("positive", "recursion again")

    assert context.topic_keywords.count("recursion") == 1


def test_failed_transaction_leaves_context_untouched(updater, learning_store):
    updater.record_feedback("positive", "baseline message text")

    def boom(session):
        raise RuntimeError("feedback insert failed")

    with pytest.raises(RuntimeError):
        updater.record_feedback("negative", "this will not be applied", on_same_transaction=boom)

    stored = learning_store.get()
    assert stored.total_feedback == 1
    assert stored.average_rating == 100.0
    assert stored.negative_patterns == ()


def test_concurrent_feedback_is_serialized(updater, learning_store):
    ratings = ["positive", "negative"] * 10

    threads = [
        threading.Thread(target=updater.record_feedback, args=(rating, f"message number {i}"))
        for i, rating in enumerate(ratings)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stored = learning_store.get()
    assert stored.total_feedback == 20
    assert stored.average_rating == pytest.approx(50.0)
    assert stored.version == 20


def test_mode_usage_is_appended_and_capped(session_factory):
    limits = LearningLimits(preferred_modes_cap=3)
    updater = LearningContextUpdater(LearningContextStore(session_factory, limits), limits)

    for mode in ("code", "tutor", "code", "research"):
        context = updater.record_mode_usage(mode)

    assert context.preferred_modes == ("tutor", "code", "research")
    assert context.total_feedback == 0
