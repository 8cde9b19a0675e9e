"""
Similarity evaluation for search candidates.

Decides whether a candidate hit becomes a suspicion:
1. The hit's relevance score must be strictly above the threshold.
2. Every highlighted field becomes a FieldComparison.
3. The email comparison is dropped when the two email usernames do not look alike.
4. A hit with no comparisons left produces nothing.
"""

from loguru import logger

from dedup_worker.config import settings
from dedup_worker.models import (
    CandidateHit,
    FieldComparison,
    SimilarityDetails,
    SourceRecord,
    SuspicionRecord,
)


NOT_APPLICABLE = "N/A"
USERNAME_PREFIX_LENGTH = 3

# Highlighted field name (lowercased) -> SourceRecord attribute
FIELD_ATTRIBUTES = {
    "nome": "full_name",
    "email": "email",
    "documento": "document_number",
    "telefone": "phone",
    "telefone.keyword": "phone",
}


def username_similar(email_a: str | None, email_b: str | None) -> bool:
    """
    Tell whether two emails have similar usernames (the part before `@`).

    - Empty emails, emails without `@` or with an empty username: not similar
    - Identical usernames (case-insensitive): similar
    - Both usernames at least 3 characters long: similar only if the first 3 match
    - Otherwise (a username shorter than 3 characters): similar
    """
    if not email_a or not email_b:
        return False
    if "@" not in email_a or "@" not in email_b:
        return False

    user_a = email_a.split("@")[0].lower()
    user_b = email_b.split("@")[0].lower()

    if not user_a or not user_b:
        return False

    if user_a == user_b:
        return True

    if len(user_a) >= USERNAME_PREFIX_LENGTH and len(user_b) >= USERNAME_PREFIX_LENGTH:
        if user_a[:USERNAME_PREFIX_LENGTH] != user_b[:USERNAME_PREFIX_LENGTH]:
            return False

    return True


def original_value_for_field(source: SourceRecord, field_name: str) -> str:
    """Source attribute compared against a highlighted field, or "N/A"."""
    if not field_name:
        return NOT_APPLICABLE

    attribute = FIELD_ATTRIBUTES.get(field_name.lower())
    if attribute is None:
        return NOT_APPLICABLE

    value = getattr(source, attribute)
    return value if value is not None else NOT_APPLICABLE


class SimilarityEvaluator:
    """Turns candidate hits into suspicion records."""

    def __init__(self, threshold: float | None = None):
        self.threshold = settings.worker.score_threshold if threshold is None else threshold

    def compare_fields(self, source: SourceRecord, hit: CandidateHit) -> list[FieldComparison]:
        # The backend has no per-field score, so each field carries the hit's score
        return [
            FieldComparison(
                field=field_name,
                original_value=original_value_for_field(source, field_name),
                found_value=", ".join(fragments),
                field_score=hit.relevance_score,
            )
            for field_name, fragments in hit.matched_fields.items()
        ]

    def evaluate(self, source: SourceRecord, hit: CandidateHit) -> SuspicionRecord | None:
        """Return a suspicion for `hit`, or None when it does not qualify."""
        if hit.relevance_score <= self.threshold:
            logger.debug(f"Candidate {hit.candidate_id} below threshold ({hit.relevance_score} <= {self.threshold})")
            return None

        comparisons = self.compare_fields(source, hit)

        if not username_similar(source.email, hit.email):
            comparisons = [c for c in comparisons if c.field.lower() != "email"]

        if not comparisons:
            logger.debug(f"Candidate {hit.candidate_id} has no field evidence left; not a suspicion")
            return None

        details = SimilarityDetails(
            summary=f"Comparação entre Novo Registro ({source.full_name}) e Existente ({hit.full_name})",
            comparisons=tuple(comparisons),
            global_score=hit.relevance_score,
        )

        return SuspicionRecord(
            original_id=source.customer_id,
            suspect_id=hit.candidate_id,
            score=hit.relevance_score,
            similarity_details=details,
        )
