# adaptive_chat/learning_store.py

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from adaptive_chat.entities import LearningContextRow
from adaptive_chat.errors import PersistenceError
from adaptive_chat.settings import LearningLimits

logger = logging.getLogger("adaptive_chat")

DEFAULT_LEARNING_STYLE = "balanced"

# The learning state lives in exactly one row, always at this primary key.
SINGLETON_ID = 1


@dataclass(frozen=True)
class LearningContext:
    topic_keywords: Tuple[str, ...] = ()
    positive_patterns: Tuple[str, ...] = ()
    negative_patterns: Tuple[str, ...] = ()
    average_rating: float = 0.0
    total_feedback: int = 0
    preferred_modes: Tuple[str, ...] = ()
    learning_style: str = DEFAULT_LEARNING_STYLE
    version: int = 0

    @classmethod
    def from_row(cls, row: LearningContextRow) -> "LearningContext":
        return cls(
            topic_keywords=tuple(row.topic_keywords or ()),
            positive_patterns=tuple(row.positive_patterns or ()),
            negative_patterns=tuple(row.negative_patterns or ()),
            average_rating=float(row.average_rating or 0.0),
            total_feedback=int(row.total_feedback or 0),
            preferred_modes=tuple(row.preferred_modes or ()),
            learning_style=row.learning_style or DEFAULT_LEARNING_STYLE,
            version=int(row.version or 0),
        )


class LearningContextStore:
    """
    Repository over the single learning_context row.

    Every mutation goes through `apply`, which serializes writers inside the
    process (lock) and across processes (version compare-and-swap). A lost
    update is retried against the fresh row; the fold itself is never
    replayed from the feedback log.
    """

    def __init__(self, session_factory: sessionmaker, limits: LearningLimits):
        self.SessionFactory = session_factory
        self.limits = limits
        self._lock = threading.Lock()

    def _load_row(self, session: Session) -> Optional[LearningContextRow]:
        return session.get(LearningContextRow, SINGLETON_ID)

    def _load_or_create_row(self, session: Session) -> LearningContextRow:
        """
        Fetch the row at SINGLETON_ID, inserting it when absent. Must run first
        in its transaction: losing the insert race rolls the session back and
        re-reads the row the other writer committed.
        """
        row = self._load_row(session)
        if row is not None:
            return row

        row = LearningContextRow(
            id=SINGLETON_ID,
            topic_keywords=[],
            positive_patterns=[],
            negative_patterns=[],
            average_rating=0.0,
            total_feedback=0,
            preferred_modes=[],
            learning_style=DEFAULT_LEARNING_STYLE,
            version=0,
        )
        session.add(row)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            logger.info("[learning] learning context row created concurrently, reloading")
            row = self._load_row(session)
            if row is None:
                raise
            return row

        logger.info("[learning] created learning context row id=%s", SINGLETON_ID)
        return row

    def get(self) -> Optional[LearningContext]:
        session = self.SessionFactory()
        try:
            row = self._load_row(session)
            return LearningContext.from_row(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read learning context: {e}") from e
        finally:
            session.close()

    def get_or_create(self) -> LearningContext:
        with self._lock:
            session = self.SessionFactory()
            try:
                row = self._load_or_create_row(session)
                context = LearningContext.from_row(row)
                session.commit()
                return context
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f"Could not create learning context: {e}") from e
            finally:
                session.close()

    def compare_and_swap(self, session: Session, row_id: int, expected_version: int,
                         new_context: LearningContext) -> bool:
        result = session.execute(
            update(LearningContextRow)
            .where(
                LearningContextRow.id == row_id,
                LearningContextRow.version == expected_version,
            )
            .values(
                topic_keywords=list(new_context.topic_keywords),
                positive_patterns=list(new_context.positive_patterns),
                negative_patterns=list(new_context.negative_patterns),
                average_rating=float(new_context.average_rating),
                total_feedback=int(new_context.total_feedback),
                preferred_modes=list(new_context.preferred_modes),
                learning_style=new_context.learning_style,
                version=expected_version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def apply(
        self,
        mutator: Callable[[LearningContext], LearningContext],
        on_same_transaction: Optional[Callable[[Session], None]] = None,
    ) -> LearningContext:
        """
        Read-modify-write of the singleton as one transaction.

        `on_same_transaction(session)` lets the caller add rows (the feedback
        event) that must commit or roll back together with the update.
        """
        with self._lock:
            for attempt in range(1, self.limits.cas_attempts + 1):
                session = self.SessionFactory()
                try:
                    row = self._load_or_create_row(session)
                    current = LearningContext.from_row(row)
                    updated = mutator(current)

                    if on_same_transaction is not None:
                        on_same_transaction(session)

                    if self.compare_and_swap(session, row.id, current.version, updated):
                        session.commit()
                        return replace(updated, version=current.version + 1)

                    session.rollback()
                    logger.warning(
                        "[learning] version conflict on attempt %s/%s (expected v%s)",
                        attempt, self.limits.cas_attempts, current.version,
                    )
                except SQLAlchemyError as e:
                    session.rollback()
                    raise PersistenceError(f"Could not update learning context: {e}") from e
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()

        raise PersistenceError(
            f"Learning context update lost {self.limits.cas_attempts} compare-and-swap races"
        )

    def reset(self) -> None:
        with self._lock:
            session = self.SessionFactory()
            try:
                session.query(LearningContextRow).delete()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f"Could not clear learning context: {e}") from e
            finally:
                session.close()
