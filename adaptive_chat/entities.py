# adaptive_chat/entities.py
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Index,
    JSON,
)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    mode: Mapped[str] = mapped_column(String, nullable=False, default="general")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)  # 'user' or 'assistant'
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(String)
    mode: Mapped[str | None] = mapped_column(String)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_messages_conversation_id", "conversation_id"),
    )


class Feedback(Base):
    """
    Append-only feedback log. At most one event per message.
    """
    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    rating: Mapped[str] = mapped_column(String(16), nullable=False)  # 'positive' or 'negative'
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LearningContextRow(Base):
    """
    Singleton row holding the aggregate learning state.
    `version` backs the compare-and-swap update in LearningContextStore.
    """
    __tablename__ = "learning_context"
    __table_args__ = (
        CheckConstraint("id = 1", name="ck_learning_context_singleton"),
    )


    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic_keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    positive_patterns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    negative_patterns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_feedback: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    preferred_modes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    learning_style: Mapped[str] = mapped_column(String, nullable=False, default="balanced")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class Suggestion(Base):
    __tablename__ = "suggestions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, default="followup")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_suggestions_conversation_id", "conversation_id"),
    )
