# adaptive_chat/chat_store.py

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from adaptive_chat.entities import Conversation, Feedback, Message, Suggestion, _utcnow
from adaptive_chat.errors import DuplicateFeedback, NotFound, PersistenceError


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def conversation_to_dict(c: Conversation) -> dict:
    return {
        "id": c.id,
        "title": c.title,
        "mode": c.mode,
        "createdAt": _iso(c.created_at),
        "updatedAt": _iso(c.updated_at),
    }


def message_to_dict(m: Message) -> dict:
    return {
        "id": m.id,
        "conversationId": m.conversation_id,
        "role": m.role,
        "content": m.content,
        "model": m.model,
        "mode": m.mode,
        "timestamp": _iso(m.timestamp),
    }


def suggestion_to_dict(s: Suggestion) -> dict:
    return {
        "id": s.id,
        "conversationId": s.conversation_id,
        "content": s.content,
        "type": s.type,
        "priority": s.priority,
        "used": s.used,
        "createdAt": _iso(s.created_at),
    }


class ChatStore:
    """
    Conversation / message / feedback / suggestion persistence.
    Every method opens and closes its own session; DB failures surface as
    PersistenceError.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.SessionFactory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Chat store operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -----------------------
    # Conversations
    # -----------------------

    def create_conversation(self, title: str, mode: str = "general") -> dict:
        with self._session() as session:
            conversation = Conversation(title=title, mode=mode)
            session.add(conversation)
            session.flush()
            return conversation_to_dict(conversation)

    def _require_conversation(self, session: Session, conversation_id: int) -> Conversation:
        conversation = session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation not found: {conversation_id}")
        return conversation

    def get_conversation(self, conversation_id: int) -> dict:
        with self._session() as session:
            return conversation_to_dict(self._require_conversation(session, conversation_id))

    def list_conversations(self) -> List[dict]:
        with self._session() as session:
            rows = (
                session.query(Conversation)
                .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
                .all()
            )
            return [conversation_to_dict(c) for c in rows]

    def count_conversations(self) -> int:
        with self._session() as session:
            return int(session.query(func.count(Conversation.id)).scalar() or 0)

    def touch_conversation(self, conversation_id: int, mode: str) -> None:
        with self._session() as session:
            conversation = self._require_conversation(session, conversation_id)
            conversation.mode = mode
            conversation.updated_at = _utcnow()

    def search_conversations(self, query: str) -> List[dict]:
        pattern = f"%{(query or '').strip().lower()}%"
        with self._session() as session:
            rows = (
                session.query(Conversation)
                .filter(or_(
                    func.lower(Conversation.title).like(pattern),
                    Conversation.id.in_(
                        session.query(Message.conversation_id)
                        .filter(func.lower(Message.content).like(pattern))
                    ),
                ))
                .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
                .all()
            )
            return [conversation_to_dict(c) for c in rows]

    # -----------------------
    # Messages
    # -----------------------

    def create_message(self, conversation_id: int, role: str, content: str,
                       model: Optional[str] = None, mode: Optional[str] = None) -> dict:
        with self._session() as session:
            self._require_conversation(session, conversation_id)
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                model=model,
                mode=mode,
            )
            session.add(message)
            session.flush()
            return message_to_dict(message)

    def get_message(self, message_id: int) -> dict:
        with self._session() as session:
            message = session.get(Message, message_id)
            if message is None:
                raise NotFound(f"Message not found: {message_id}")
            return message_to_dict(message)

    def get_messages(self, conversation_id: int, limit: Optional[int] = None) -> List[dict]:
        """Oldest first; `limit` keeps the most recent ones."""
        with self._session() as session:
            self._require_conversation(session, conversation_id)
            rows = (
                session.query(Message)
                .filter(Message.conversation_id == conversation_id)
                .order_by(Message.timestamp, Message.id)
                .all()
            )
            if limit is not None:
                rows = rows[-limit:] if limit > 0 else []
            return [message_to_dict(m) for m in rows]

    # -----------------------
    # Feedback
    # -----------------------

    def feedback_exists(self, message_id: int) -> bool:
        with self._session() as session:
            return session.query(Feedback.id).filter(Feedback.message_id == message_id).first() is not None

    def add_feedback(self, session: Session, message_id: int, rating: str) -> None:
        """
        Insert the feedback row inside a caller-owned transaction.
        """
        session.add(Feedback(message_id=message_id, rating=rating))
        try:
            session.flush()
        except IntegrityError as e:
            reason = str(e.orig).lower()
            if "unique" in reason or "duplicate key" in reason:
                raise DuplicateFeedback(f"Feedback already recorded for message {message_id}") from e
            if "foreign key" in reason:
                raise NotFound(f"Message not found: {message_id}") from e
            raise

    # -----------------------
    # Suggestions
    # -----------------------

    def create_suggestions(self, conversation_id: int, contents: List[str],
                           suggestion_type: str = "followup") -> List[dict]:
        with self._session() as session:
            rows = [
                Suggestion(
                    conversation_id=conversation_id,
                    content=content,
                    type=suggestion_type,
                    priority=index,
                    used=False,
                )
                for index, content in enumerate(contents, start=1)
            ]
            session.add_all(rows)
            session.flush()
            return [suggestion_to_dict(s) for s in rows]

    def list_suggestions(self, conversation_id: int, include_used: bool = False) -> List[dict]:
        with self._session() as session:
            q = session.query(Suggestion).filter(Suggestion.conversation_id == conversation_id)
            if not include_used:
                q = q.filter(Suggestion.used.is_(False))
            rows = q.order_by(Suggestion.id).all()
            return [suggestion_to_dict(s) for s in rows]

    def mark_suggestion_used(self, suggestion_id: int) -> None:
        with self._session() as session:
            suggestion = session.get(Suggestion, suggestion_id)
            if suggestion is None:
                raise NotFound(f"Suggestion not found: {suggestion_id}")
            suggestion.used = True
