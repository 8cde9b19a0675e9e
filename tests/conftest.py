# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for the duplicate-detection worker tests."""

import os
import uuid
from datetime import datetime, timezone

import pytest

# Set test environment variables before importing the package
os.environ.setdefault("DISABLE_LOGGING", "1")
os.environ.setdefault("POSTGRES_PASSWORD", "test")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dedup_worker.config import RabbitMQSettings
from dedup_worker.database import create_all_tables
from dedup_worker.models import CandidateHit, CustomerType, InboundEvent, SourceRecord


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all_tables(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def rabbitmq_settings() -> RabbitMQSettings:
    """Broker settings with a small, instant retry budget."""
    return RabbitMQSettings(connect_attempts=3, connect_retry_delay=0)


@pytest.fixture
def customer_id() -> uuid.UUID:
    return uuid.UUID("a0000000-0000-4000-8000-00000000000a")


@pytest.fixture
def suspect_id() -> uuid.UUID:
    return uuid.UUID("b0000000-0000-4000-8000-00000000000b")


@pytest.fixture
def source_record(customer_id) -> SourceRecord:
    """Customer record carried by the sample event."""
    return SourceRecord(
        customer_id=customer_id,
        customer_type=CustomerType.INDIVIDUAL,
        full_name="João Silva",
        email="joao@x.com",
        document_number="123",
        phone="555",
    )


@pytest.fixture
def sample_event(source_record) -> InboundEvent:
    """Customer-changed event for the sample record."""
    return InboundEvent(
        event_id=uuid.uuid4(),
        event_type="ClienteAtualizado",
        timestamp=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        data=source_record,
    )


@pytest.fixture
def make_hit(suspect_id):
    """Factory for candidate hits; defaults match the sample record by name and document."""

    def _make_hit(**overrides) -> CandidateHit:
        values = {
            "candidate_id": suspect_id,
            "relevance_score": 5.0,
            "full_name": "João Silva",
            "document_number": "123",
            "phone": "556",
            "email": "joao.silva@x.com",
            "customer_type": CustomerType.INDIVIDUAL,
            "matched_fields": {"nome": ["João Silva"], "documento": ["123"]},
        }
        values.update(overrides)
        return CandidateHit(**values)

    return _make_hit
