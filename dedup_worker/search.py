"""
Candidate retrieval from the customer search index.

Builds a disjunctive similarity query for a source record and turns the
backend's hits into CandidateHit values. How the backend tokenizes and scores
text is its own business; only the query contract lives here.
"""

import uuid
from typing import Any

from elasticsearch import ApiError, Elasticsearch, TransportError
from loguru import logger

from dedup_worker.config import ElasticsearchSettings, settings
from dedup_worker.exceptions import RetrievalError
from dedup_worker.models import CandidateHit, CustomerType, SourceRecord


# Indexed field names
ID_FIELD = "id"
NAME_FIELD = "nome"
DOCUMENT_FIELD = "documento"
EMAIL_FIELD = "email"
PHONE_FIELD = "telefone"
PHONE_KEYWORD_FIELD = "telefone.keyword"
CUSTOMER_TYPE_FIELD = "tipoCliente"

HIGHLIGHT_FIELDS = (NAME_FIELD, EMAIL_FIELD, DOCUMENT_FIELD, PHONE_KEYWORD_FIELD)

EMAIL_BOOST = 1.5
EMAIL_PREFIX_LENGTH = 3
PHONE_BOOST = 2.0


def build_client(es_settings: ElasticsearchSettings | None = None) -> Elasticsearch:
    """Create an Elasticsearch client from settings."""
    es_settings = es_settings or settings.elasticsearch

    options: dict[str, Any] = {"verify_certs": es_settings.verify_certs}
    if es_settings.username:
        options["basic_auth"] = (es_settings.username, es_settings.password or "")
    if es_settings.request_timeout is not None:
        options["request_timeout"] = es_settings.request_timeout

    return Elasticsearch(es_settings.url, **options)


class CandidateRetriever:
    """Finds existing customers that look like a given source record."""

    def __init__(self, client: Elasticsearch, index: str | None = None):
        self.client = client
        self.index = index or settings.elasticsearch.index

    @staticmethod
    def build_query(record: SourceRecord) -> dict[str, Any]:
        """
        Build the bool query for `record`.

        Each populated attribute adds a `should` clause:
        - fuzzy match on name
        - match on document number
        - fuzzy match on the email local part (first 3 characters must match), boosted 1.5
        - exact term on the unanalyzed phone, boosted 2.0

        Empty attributes contribute no clause. The record itself is always
        excluded through `must_not`.
        """
        should: list[dict[str, Any]] = []

        if record.full_name:
            should.append({"match": {NAME_FIELD: {"query": record.full_name, "fuzziness": "AUTO"}}})

        if record.document_number:
            should.append({"match": {DOCUMENT_FIELD: {"query": record.document_number}}})

        local_part = record.email_local_part
        if local_part:
            should.append({
                "match": {
                    EMAIL_FIELD: {
                        "query": local_part,
                        "fuzziness": "AUTO",
                        "prefix_length": EMAIL_PREFIX_LENGTH,
                        "boost": EMAIL_BOOST,
                    }
                }
            })

        if record.phone:
            should.append({"term": {PHONE_KEYWORD_FIELD: {"value": record.phone, "boost": PHONE_BOOST}}})

        return {
            "bool": {
                "should": should,
                "must_not": [{"term": {ID_FIELD: {"value": str(record.customer_id)}}}],
            }
        }

    @staticmethod
    def build_highlight() -> dict[str, Any]:
        """Highlight request returning raw matched text (no markup around fragments)."""
        return {
            "fields": {name: {} for name in HIGHLIGHT_FIELDS},
            "pre_tags": [""],
            "post_tags": [""],
        }

    def find_candidates(self, record: SourceRecord) -> list[CandidateHit]:
        """
        Query the index for records similar to `record`.

        Raises:
            RetrievalError: When the backend fails or the response is unusable
        """
        query = self.build_query(record)
        if not query["bool"]["should"]:
            logger.info(f"Customer {record.customer_id} has no searchable attributes; skipping search")
            return []

        try:
            response = self.client.search(
                index=self.index,
                query=query,
                highlight=self.build_highlight(),
            )
        except (ApiError, TransportError) as exc:
            logger.error(f"Search backend error for customer {record.customer_id}: {exc}")
            raise RetrievalError(
                f"Search failed for customer {record.customer_id}: {exc}",
                customer_id=record.customer_id,
                status_code=getattr(exc, "status_code", None),
            ) from exc

        body = getattr(response, "body", response)
        if not isinstance(body, dict) or body.get("timed_out") or "hits" not in body:
            raise RetrievalError(
                f"Invalid search response for customer {record.customer_id}",
                customer_id=record.customer_id,
            )

        hits = body["hits"].get("hits", [])
        candidates = [c for c in (self._parse_hit(h) for h in hits) if c is not None]
        logger.debug(f"Search for customer {record.customer_id} returned {len(hits)} hits ({len(candidates)} usable)")
        return candidates

    @staticmethod
    def _parse_hit(hit: dict[str, Any]) -> CandidateHit | None:
        source = hit.get("_source")
        if not source:
            logger.warning(f"Hit {hit.get('_id')} (score={hit.get('_score')}) has no _source; skipping")
            return None

        try:
            candidate_id = uuid.UUID(str(source[ID_FIELD]))
        except (KeyError, ValueError):
            logger.warning(f"Hit {hit.get('_id')} has no valid customer id; skipping")
            return None

        highlight = hit.get("highlight") or {}

        return CandidateHit(
            candidate_id=candidate_id,
            relevance_score=float(hit.get("_score") or 0.0),
            full_name=source.get(NAME_FIELD),
            document_number=source.get(DOCUMENT_FIELD),
            phone=source.get(PHONE_FIELD),
            email=source.get(EMAIL_FIELD),
            customer_type=CustomerType.parse(source.get(CUSTOMER_TYPE_FIELD)),
            matched_fields={name: list(fragments) for name, fragments in highlight.items()},
        )
