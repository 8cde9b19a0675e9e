"""Transactional persistence of suspicions, one commit per processed event."""

import uuid

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from dedup_worker.database import DuplicateSuspicion, SessionLocal, get_session
from dedup_worker.exceptions import PersistenceError
from dedup_worker.models import SuspicionRecord


class SuspicionStore:
    """
    Holds the suspicions found for the event being processed.

    Records are staged while hits are evaluated and written together by
    commit_all(): either every staged record is stored or none is. The staged
    set is emptied after each commit attempt.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal
        self._pending: list[SuspicionRecord] = []

    @property
    def pending(self) -> tuple[SuspicionRecord, ...]:
        return tuple(self._pending)

    def stage(self, record: SuspicionRecord) -> None:
        self._pending.append(record)

    def discard(self) -> None:
        """Drop staged records without writing them."""
        self._pending.clear()

    def commit_all(self) -> int:
        """
        Write all staged records in one transaction.

        Returns:
            Number of records written

        Raises:
            PersistenceError: When the transaction fails (nothing is written)
        """
        staged, self._pending = self._pending, []
        if not staged:
            return 0

        try:
            with get_session(self.session_factory) as session:
                session.add_all([DuplicateSuspicion.from_record(r) for r in staged])
        except SQLAlchemyError as exc:
            logger.error(f"Rolled back {len(staged)} suspicion(s): {exc}")
            raise PersistenceError(f"Could not commit {len(staged)} suspicion(s): {exc}", staged=len(staged)) from exc

        logger.info(f"Committed {len(staged)} suspicion(s)")
        return len(staged)

    def exists(self, original_id: uuid.UUID, suspect_id: uuid.UUID) -> bool:
        """True if a suspicion for this pair is already stored."""
        try:
            with get_session(self.session_factory) as session:
                found = session.execute(
                    select(DuplicateSuspicion.id)
                    .where(DuplicateSuspicion.original_id == original_id)
                    .where(DuplicateSuspicion.suspect_id == suspect_id)
                    .limit(1)
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not look up suspicion {original_id} ~ {suspect_id}: {exc}") from exc
        return found is not None
