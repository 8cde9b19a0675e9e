"""
Data models for the duplicate-detection worker.

Wire-facing events are pydantic models whose aliases follow the broker's JSON
schema. Internal values (hits, comparisons, suspicions) are plain dataclasses.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Longer fractional seconds (e.g. .NET's 7 digits) are cut to microseconds
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class CustomerType(str, Enum):
    """Customer subtype carried as `tipoCliente`."""

    INDIVIDUAL = "PF"
    ORGANIZATION = "PJ"
    UNKNOWN = ""

    @classmethod
    def parse(cls, value: Any) -> "CustomerType":
        """Map any wire or index representation to a subtype, UNKNOWN when unmapped."""
        if isinstance(value, CustomerType):
            return value
        if value is None:
            return cls.UNKNOWN
        key = str(value).strip().lower()
        return _CUSTOMER_TYPE_NAMES.get(key, cls.UNKNOWN)


_CUSTOMER_TYPE_NAMES = {
    "pf": CustomerType.INDIVIDUAL,
    "pessoafisica": CustomerType.INDIVIDUAL,
    "individual": CustomerType.INDIVIDUAL,
    "pj": CustomerType.ORGANIZATION,
    "pessoajuridica": CustomerType.ORGANIZATION,
    "organization": CustomerType.ORGANIZATION,
}


class SourceRecord(BaseModel):
    """Customer data carried in an event's `data` field."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    customer_id: Optional[uuid.UUID] = Field(None, alias="clienteId")
    customer_type: Optional[CustomerType] = Field(None, alias="tipoCliente")
    document_number: Optional[str] = Field(None, alias="documento")
    full_name: Optional[str] = Field(None, alias="nome")
    phone: Optional[str] = Field(None, alias="telefone")
    email: Optional[str] = Field(None, alias="email")

    @field_validator("customer_id", mode="before")
    @classmethod
    def blank_id_is_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("customer_type", mode="before")
    @classmethod
    def parse_customer_type(cls, v):
        if v is None:
            return None
        return CustomerType.parse(v)

    @property
    def has_identity(self) -> bool:
        """True when the record carries a non-nil customer id."""
        return self.customer_id is not None and self.customer_id.int != 0

    @property
    def email_local_part(self) -> str:
        """Text before the first `@` of the email, or "" when there is no email."""
        if not self.email:
            return ""
        return self.email.split("@")[0]


class InboundEvent(BaseModel):
    """
    Customer event as exchanged on the broker.

    The same shape is used for inbound "customer changed" events and for the
    downstream duplicate events this worker publishes.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    event_id: uuid.UUID = Field(..., alias="eventId")
    event_type: str = Field("", alias="eventType")
    timestamp: datetime
    data: Optional[SourceRecord] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def trim_fraction(cls, v):
        if isinstance(v, str):
            return _FRACTION_RE.sub(r"\1", v)
        return v

    def to_json(self) -> str:
        """Serialize to the broker JSON schema, omitting absent optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: bytes | str) -> "InboundEvent":
        return cls.model_validate_json(raw)


# Duplicate events share the inbound schema
DuplicateEvent = InboundEvent


@dataclass
class CandidateHit:
    """A record returned by the search backend as possibly similar to the source."""

    candidate_id: uuid.UUID
    relevance_score: float
    full_name: str | None = None
    document_number: str | None = None
    phone: str | None = None
    email: str | None = None
    customer_type: CustomerType = CustomerType.UNKNOWN

    # field name -> highlighted fragments, in backend order
    matched_fields: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldComparison:
    """Evidence for one matched field of a hit."""

    field: str
    original_value: str
    found_value: str
    field_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "Campo": self.field,
            "ValorOriginal": self.original_value,
            "ValorEncontrado": self.found_value,
            "ScoreCampo": self.field_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldComparison":
        return cls(
            field=data["Campo"],
            original_value=data["ValorOriginal"],
            found_value=data["ValorEncontrado"],
            field_score=data["ScoreCampo"],
        )


@dataclass(frozen=True)
class SimilarityDetails:
    """
    Structured similarity evidence stored with a suspicion.

    Serialized with the original table's JSON keys so rows written by either
    implementation stay readable.
    """

    summary: str
    comparisons: tuple[FieldComparison, ...]
    global_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "Resumo": self.summary,
            "ComparativoDetalhado": [c.to_dict() for c in self.comparisons],
            "ScoreGlobal": self.global_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimilarityDetails":
        return cls(
            summary=data.get("Resumo", ""),
            comparisons=tuple(FieldComparison.from_dict(c) for c in data.get("ComparativoDetalhado", [])),
            global_score=data.get("ScoreGlobal", 0.0),
        )


@dataclass(frozen=True)
class SuspicionRecord:
    """
    A decision that two customer records are probably duplicates.

    Immutable once created; there is no update path.
    """

    original_id: uuid.UUID
    suspect_id: uuid.UUID
    score: float
    similarity_details: SimilarityDetails
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.original_id == self.suspect_id:
            raise ValueError(f"Suspicion cannot point a record at itself: {self.original_id}")
        if not self.similarity_details.comparisons:
            raise ValueError("Suspicion requires at least one field comparison")
