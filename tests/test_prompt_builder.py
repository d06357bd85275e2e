import pytest

from adaptive_chat.learning_store import LearningContext
from adaptive_chat.prompt_builder import build_system_prompt
from adaptive_chat.prompts import MODE_TEMPLATES, Mode, get_mode_template


POSITIVE_HEADER = "Based on positive feedback, users appreciate when you:"
NEGATIVE_HEADER = "Based on negative feedback, users prefer you avoid:"
RATING_HEADER = "Your current average rating is"


@pytest.mark.parametrize("mode", list(Mode))
def test_no_learning_context_returns_plain_template(mode):
    assert build_system_prompt(mode, None) == MODE_TEMPLATES[mode].instructions
    assert build_system_prompt(mode.value, LearningContext()) == MODE_TEMPLATES[mode].instructions


@pytest.mark.parametrize("positive, negative, rating", [
    ((), (), 0.0),
    (("provide clear explanations",), (), 0.0),
    ((), ("avoid uncertain language",), 0.0),
    ((), (), 42.0),
    (("include relevant examples", "break down into steps"), ("avoid overly brief responses",), 75.0),
])
def test_clauses_appear_only_when_present(positive, negative, rating):
    context = LearningContext(positive_patterns=positive, negative_patterns=negative, average_rating=rating)

    prompt = build_system_prompt("general", context)

    assert (POSITIVE_HEADER in prompt) == bool(positive)
    assert (NEGATIVE_HEADER in prompt) == bool(negative)
    assert (RATING_HEADER in prompt) == (rating > 0)


def test_clause_text_and_order():
    context = LearningContext(
        positive_patterns=("provide clear explanations", "include relevant examples"),
        negative_patterns=("avoid uncertain language",),
        average_rating=66.6667,
    )

    prompt = build_system_prompt(Mode.TUTOR, context)

    assert prompt.startswith(get_mode_template("tutor").instructions)
    assert prompt.endswith(
        "\n\nBased on positive feedback, users appreciate when you: "
        "provide clear explanations, include relevant examples"
        "\n\nBased on negative feedback, users prefer you avoid: avoid uncertain language"
        "\n\nYour current average rating is 67%. Continue to improve based on user feedback."
    )


def test_unknown_mode_renders_general():
    context = LearningContext(positive_patterns=("provide detailed responses",), average_rating=100.0)

    assert build_system_prompt("poetry", context) == build_system_prompt("general", context)
    assert build_system_prompt(None, None) == MODE_TEMPLATES[Mode.GENERAL].instructions


def test_build_is_deterministic():
    context = LearningContext(negative_patterns=("be more definitive when possible",), average_rating=12.4)

    assert build_system_prompt("code", context) == build_system_prompt("code", context)
    assert "12%" in build_system_prompt("code", context)


def test_mode_table():
    assert get_mode_template("code").temperature == 0.3
    assert get_mode_template("code").max_output_tokens == 1500
    assert get_mode_template("creative").temperature == 0.9
    assert get_mode_template("research").max_output_tokens == 1200
    assert get_mode_template("general").history_window == 10
    assert {get_mode_template(m).history_window for m in ("tutor", "creative", "code", "research")} == {8}
