"""
Database models for the duplicate-detection worker.

Uses SQLAlchemy 2.0. Only the suspicion table is owned by this service.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import (
    create_engine,
    DateTime,
    Float,
    Index,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)

from dedup_worker.config import settings
from dedup_worker.models import SimilarityDetails, SuspicionRecord


# =============================================================================
# Database Engine and Session
# =============================================================================

engine = create_engine(
    settings.database.url,
    echo=settings.worker.log_level == "DEBUG",
    pool_pre_ping=True,
    pool_size=5,            # One worker thread, a few spare connections
    max_overflow=5,
    pool_timeout=30,
    pool_recycle=1800,      # Recycle connections every 30 minutes
    connect_args={
        "connect_timeout": 10,  # Connection timeout in seconds
    }
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_session(session_factory=None):
    """Context manager for database sessions."""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Deduplication Models
# =============================================================================

class DuplicateSuspicion(Base):
    """
    Persisted suspicion that two customer records are duplicates.

    Rows are written once per accepted candidate and never updated.
    Column names match the table shared with the customer platform.
    """
    __tablename__ = "Suspeitas_Duplicidade"

    id: Mapped[uuid.UUID] = mapped_column(
        "id",
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # The record that triggered the analysis and the existing one it resembles
    original_id: Mapped[uuid.UUID] = mapped_column("idOriginal", Uuid(as_uuid=True), nullable=False)
    suspect_id: Mapped[uuid.UUID] = mapped_column("idSuspeito", Uuid(as_uuid=True), nullable=False)

    score: Mapped[float] = mapped_column("score", Float, nullable=False)

    # {"Resumo", "ComparativoDetalhado", "ScoreGlobal"}
    similarity_details: Mapped[dict] = mapped_column(
        "detalhesSimilaridade",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )

    detected_at: Mapped[datetime] = mapped_column("dataDeteccao", DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_suspeitas_id_original", "idOriginal"),
        Index("idx_suspeitas_id_suspeito", "idSuspeito"),
    )

    @classmethod
    def from_record(cls, record: SuspicionRecord) -> "DuplicateSuspicion":
        return cls(
            id=record.id,
            original_id=record.original_id,
            suspect_id=record.suspect_id,
            score=record.score,
            similarity_details=record.similarity_details.to_dict(),
            detected_at=record.detected_at,
        )

    def to_record(self) -> SuspicionRecord:
        return SuspicionRecord(
            id=self.id,
            original_id=self.original_id,
            suspect_id=self.suspect_id,
            score=self.score,
            similarity_details=SimilarityDetails.from_dict(self.similarity_details),
            detected_at=self.detected_at,
        )

    def __repr__(self) -> str:
        return f"<DuplicateSuspicion {self.original_id} ~ {self.suspect_id} ({self.score})>"


# =============================================================================
# Helper Functions
# =============================================================================

def create_all_tables(bind=None):
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


def drop_all_tables(bind=None):
    """Drop all database tables. USE WITH CAUTION!"""
    Base.metadata.drop_all(bind=bind or engine)
