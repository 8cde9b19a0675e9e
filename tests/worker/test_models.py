# SPDX-License-Identifier: MIT
"""Tests for event and suspicion models."""

import json
import uuid

import pytest
from pydantic import ValidationError

from dedup_worker.models import (
    CustomerType,
    FieldComparison,
    InboundEvent,
    SimilarityDetails,
    SourceRecord,
    SuspicionRecord,
)


WIRE_EVENT = """
{
  "eventId": "3f2504e0-4f89-41d3-9a0c-0305e82c3301",
  "eventType": "ClienteCriado",
  "timestamp": "2024-05-01T12:30:00.1234567Z",
  "data": {
    "clienteId": "a0000000-0000-4000-8000-00000000000a",
    "tipoCliente": "PessoaFisica",
    "documento": "123",
    "nome": "João Silva",
    "telefone": "555",
    "email": "joao@x.com"
  }
}
"""


class TestInboundEvent:
    """Test the broker JSON schema."""

    def test_parses_wire_json(self, customer_id):
        event = InboundEvent.from_json(WIRE_EVENT)

        assert event.event_id == uuid.UUID("3f2504e0-4f89-41d3-9a0c-0305e82c3301")
        assert event.event_type == "ClienteCriado"
        assert event.timestamp.microsecond == 123456
        assert event.data.customer_id == customer_id
        assert event.data.customer_type == CustomerType.INDIVIDUAL
        assert event.data.full_name == "João Silva"

    def test_json_round_trip(self, sample_event):
        assert InboundEvent.from_json(sample_event.to_json()) == sample_event

    def test_serializes_with_wire_names(self, sample_event):
        payload = json.loads(sample_event.to_json())

        assert set(payload) == {"eventId", "eventType", "timestamp", "data"}
        assert payload["data"]["clienteId"] == str(sample_event.data.customer_id)
        assert payload["data"]["tipoCliente"] == "PF"

    def test_missing_data_is_allowed(self):
        event = InboundEvent.from_json('{"eventId": "3f2504e0-4f89-41d3-9a0c-0305e82c3301", "timestamp": "2024-05-01T12:30:00Z"}')

        assert event.data is None
        assert "data" not in json.loads(event.to_json())

    @pytest.mark.parametrize("raw", ["{not json", '{"eventType": "ClienteCriado"}', '{"eventId": "nope", "timestamp": "2024-05-01T12:30:00Z"}'])
    def test_rejects_invalid_payloads(self, raw):
        with pytest.raises(ValidationError):
            InboundEvent.from_json(raw)


class TestSourceRecord:
    """Test identity and email helpers."""

    def test_blank_id_is_missing(self):
        record = SourceRecord.model_validate({"clienteId": "  ", "nome": "Ana"})

        assert record.customer_id is None
        assert not record.has_identity

    def test_nil_id_has_no_identity(self):
        assert not SourceRecord(customer_id=uuid.UUID(int=0)).has_identity

    def test_identity(self, source_record):
        assert source_record.has_identity

    @pytest.mark.parametrize(
        "email, expected",
        [("joao.silva@x.com", "joao.silva"), ("joao", "joao"), (None, ""), ("", "")],
    )
    def test_email_local_part(self, email, expected):
        assert SourceRecord(email=email).email_local_part == expected


class TestCustomerType:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("PF", CustomerType.INDIVIDUAL),
            ("pessoafisica", CustomerType.INDIVIDUAL),
            ("Individual", CustomerType.INDIVIDUAL),
            ("PJ", CustomerType.ORGANIZATION),
            ("PessoaJuridica", CustomerType.ORGANIZATION),
            ("Organization", CustomerType.ORGANIZATION),
            ("ONG", CustomerType.UNKNOWN),
            (None, CustomerType.UNKNOWN),
            (1, CustomerType.UNKNOWN),
        ],
    )
    def test_parse(self, value, expected):
        assert CustomerType.parse(value) is expected


class TestSuspicionRecord:
    """Test suspicion invariants."""

    @pytest.fixture
    def details(self):
        return SimilarityDetails(
            summary="Comparação entre Novo Registro (A) e Existente (B)",
            comparisons=(FieldComparison("documento", "123", "123", 5.0),),
            global_score=5.0,
        )

    def test_rejects_self_reference(self, details, customer_id):
        with pytest.raises(ValueError):
            SuspicionRecord(customer_id, customer_id, 5.0, details)

    def test_rejects_empty_evidence(self, customer_id, suspect_id):
        empty = SimilarityDetails(summary="", comparisons=(), global_score=5.0)

        with pytest.raises(ValueError):
            SuspicionRecord(customer_id, suspect_id, 5.0, empty)

    def test_defaults(self, details, customer_id, suspect_id):
        first = SuspicionRecord(customer_id, suspect_id, 5.0, details)
        second = SuspicionRecord(customer_id, suspect_id, 5.0, details)

        assert first.id != second.id
        assert first.detected_at.tzinfo is not None

    def test_details_dict_round_trip(self, details):
        assert SimilarityDetails.from_dict(details.to_dict()) == details
