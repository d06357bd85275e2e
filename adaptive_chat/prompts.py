# adaptive_chat/prompts.py
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Mode(str, Enum):
    GENERAL = "general"
    TUTOR = "tutor"
    CREATIVE = "creative"
    CODE = "code"
    RESEARCH = "research"

    @classmethod
    def parse(cls, value) -> "Mode":
        """Unknown or empty mode ids behave as `general`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.GENERAL


@dataclass(frozen=True)
class ModeTemplate:
    mode: Mode
    instructions: str
    suggestions: Tuple[str, ...]
    confidence: float
    temperature: float
    max_output_tokens: int
    history_window: int
    followup_focus: str
    fallback_reply: str


GENERAL_PROMPT = """You are an AI Learning Assistant that improves through user feedback.
You should provide helpful, accurate, and clear responses.
Always aim to be educational and supportive."""

TUTOR_PROMPT = """You are an expert tutor. Your role is to:
- Break down complex topics into digestible steps
- Use analogies and examples to explain concepts
- Ask clarifying questions to ensure understanding
- Provide practice exercises when appropriate
- Encourage active learning and critical thinking

Always structure your responses with:
1. Clear explanations
2. Step-by-step breakdowns
3. Practical examples
4. Questions to test understanding"""

CREATIVE_PROMPT = """You are a creative assistant focused on:
- Brainstorming and idea generation
- Creative writing and storytelling
- Artistic and design thinking
- Innovative problem-solving approaches
- Inspirational and imaginative responses

Be imaginative, think outside the box, and encourage creative exploration.
Use vivid language, metaphors, and help spark new ideas."""

CODE_PROMPT = """You are a programming expert assistant. Focus on:
- Clear, well-commented code examples
- Best practices and conventions
- Debugging and troubleshooting
- Code optimization and performance
- Explaining complex programming concepts

Always provide:
1. Working code examples
2. Clear explanations of logic
3. Best practices
4. Potential improvements
5. Testing suggestions"""

RESEARCH_PROMPT = """You are a research assistant focused on:
- In-depth analysis of topics
- Evidence-based information
- Multiple perspectives and viewpoints
- Structured research methodology
- Critical evaluation of sources

Provide comprehensive, well-structured responses with:
1. Key findings and insights
2. Different perspectives
3. Evidence and reasoning
4. Areas for further exploration
5. Reliable sources when possible"""


MODE_TEMPLATES: Dict[Mode, ModeTemplate] = {
    Mode.GENERAL: ModeTemplate(
        mode=Mode.GENERAL,
        instructions=GENERAL_PROMPT,
        suggestions=(
            "Can you tell me more about this?",
            "Can you give me an example?",
            "What should I explore next?",
        ),
        confidence=0.8,
        temperature=0.7,
        max_output_tokens=1000,
        history_window=10,
        followup_focus="Focus on helpful and relevant continuation.",
        fallback_reply="I'm sorry, I couldn't generate a response.",
    ),
    Mode.TUTOR: ModeTemplate(
        mode=Mode.TUTOR,
        instructions=TUTOR_PROMPT,
        suggestions=(
            "Can you give me a practical example?",
            "What's the most important concept to remember?",
            "How can I practice this skill?",
            "What are common mistakes to avoid?",
        ),
        confidence=0.85,
        temperature=0.7,
        max_output_tokens=1000,
        history_window=8,
        followup_focus="Focus on learning objectives and skill development.",
        fallback_reply="I'd be happy to help you learn this topic step by step.",
    ),
    Mode.CREATIVE: ModeTemplate(
        mode=Mode.CREATIVE,
        instructions=CREATIVE_PROMPT,
        suggestions=(
            "Can you suggest some creative variations?",
            "What would make this more unique?",
            "How can I approach this differently?",
            "What inspires this concept?",
        ),
        confidence=0.8,
        temperature=0.9,
        max_output_tokens=1000,
        history_window=8,
        followup_focus="Focus on creative exploration and new ideas.",
        fallback_reply="Let's explore some creative possibilities together!",
    ),
    Mode.CODE: ModeTemplate(
        mode=Mode.CODE,
        instructions=CODE_PROMPT,
        suggestions=(
            "Can you explain this code step by step?",
            "How can I optimize this further?",
            "What are the best practices here?",
            "Are there any potential bugs?",
        ),
        confidence=0.9,
        temperature=0.3,
        max_output_tokens=1500,
        history_window=8,
        followup_focus="Focus on technical implementation and best practices.",
        fallback_reply="Let me help you with that code!",
    ),
    Mode.RESEARCH: ModeTemplate(
        mode=Mode.RESEARCH,
        instructions=RESEARCH_PROMPT,
        suggestions=(
            "What are the key research findings?",
            "Are there opposing viewpoints?",
            "What evidence supports this?",
            "What should I research next?",
        ),
        confidence=0.85,
        temperature=0.4,
        max_output_tokens=1200,
        history_window=8,
        followup_focus="Focus on deeper analysis and related topics.",
        fallback_reply="Let me help you research this topic thoroughly.",
    ),
}


def get_mode_template(mode) -> ModeTemplate:
    return MODE_TEMPLATES[Mode.parse(mode)]


# -----------------------
# Learning context clauses
# -----------------------

POSITIVE_PATTERNS_CLAUSE = "\n\nBased on positive feedback, users appreciate when you: {patterns}"
NEGATIVE_PATTERNS_CLAUSE = "\n\nBased on negative feedback, users prefer you avoid: {patterns}"
RATING_CLAUSE = "\n\nYour current average rating is {rating}%. Continue to improve based on user feedback."


# -----------------------
# Follow-up suggestions
# -----------------------

FOLLOWUP_PROMPT = """Based on this conversation and message: "{last_message}", suggest {count} helpful follow-up questions or topics that would be valuable to explore next. {focus}
Return one question per line, with no extra commentary."""

API_KEY_PROBE_MESSAGE = "Hello"

SUGGESTIONS_SYSTEM_PROMPT = """You propose short follow-up questions a learner could ask next.
Each question must stand on its own and fit on a single line."""
