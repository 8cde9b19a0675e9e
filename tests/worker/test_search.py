# SPDX-License-Identifier: MIT
"""Tests for candidate retrieval."""

import uuid

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from dedup_worker.exceptions import RetrievalError
from dedup_worker.models import CustomerType, SourceRecord
from dedup_worker.search import CandidateRetriever


def _search_response(*hits) -> dict:
    return {"timed_out": False, "hits": {"hits": list(hits)}}


class TestBuildQuery:
    """Test the similarity query contract."""

    def test_all_clauses(self, source_record, customer_id):
        query = CandidateRetriever.build_query(source_record)
        should = query["bool"]["should"]

        assert {"match": {"nome": {"query": "João Silva", "fuzziness": "AUTO"}}} in should
        assert {"match": {"documento": {"query": "123"}}} in should
        assert {"term": {"telefone.keyword": {"value": "555", "boost": 2.0}}} in should
        assert query["bool"]["must_not"] == [{"term": {"id": {"value": str(customer_id)}}}]

    def test_email_uses_local_part_only(self, source_record):
        should = CandidateRetriever.build_query(source_record)["bool"]["should"]
        email_clause = next(c for c in should if "email" in c.get("match", {}))["match"]["email"]

        assert email_clause == {
            "query": "joao",
            "fuzziness": "AUTO",
            "prefix_length": 3,
            "boost": 1.5,
        }

    def test_empty_attributes_add_no_clause(self, customer_id):
        record = SourceRecord(customer_id=customer_id, full_name="Ana")
        should = CandidateRetriever.build_query(record)["bool"]["should"]

        assert should == [{"match": {"nome": {"query": "Ana", "fuzziness": "AUTO"}}}]

    def test_highlight_has_no_markup(self):
        highlight = CandidateRetriever.build_highlight()

        assert highlight["pre_tags"] == [""]
        assert highlight["post_tags"] == [""]
        assert set(highlight["fields"]) == {"nome", "email", "documento", "telefone.keyword"}


class TestFindCandidates:
    """Test querying the backend and parsing hits."""

    def test_parses_hits(self, mocker, source_record, suspect_id):
        client = mocker.MagicMock()
        client.search.return_value = _search_response({
            "_id": "1",
            "_score": 5.5,
            "_source": {
                "id": str(suspect_id),
                "nome": "João Silva",
                "documento": "123",
                "email": "joao.silva@x.com",
                "telefone": "556",
                "tipoCliente": "PJ",
            },
            "highlight": {"nome": ["João Silva"], "documento": ["123"]},
        })

        hits = CandidateRetriever(client, index="customers").find_candidates(source_record)

        assert len(hits) == 1
        hit = hits[0]
        assert hit.candidate_id == suspect_id
        assert hit.relevance_score == 5.5
        assert hit.customer_type == CustomerType.ORGANIZATION
        assert list(hit.matched_fields) == ["nome", "documento"]

        kwargs = client.search.call_args.kwargs
        assert kwargs["index"] == "customers"
        assert kwargs["query"] == CandidateRetriever.build_query(source_record)

    def test_skips_hits_without_source(self, mocker, source_record, suspect_id):
        client = mocker.MagicMock()
        client.search.return_value = _search_response(
            {"_id": "1", "_score": 9.0},
            {"_id": "2", "_score": 5.0, "_source": {"id": str(suspect_id)}},
            {"_id": "3", "_score": 5.0, "_source": {"id": "not-a-uuid"}},
        )

        hits = CandidateRetriever(client).find_candidates(source_record)

        assert [h.candidate_id for h in hits] == [suspect_id]
        assert hits[0].matched_fields == {}

    def test_no_searchable_attributes_skips_query(self, mocker):
        client = mocker.MagicMock()
        record = SourceRecord(customer_id=uuid.uuid4())

        assert CandidateRetriever(client).find_candidates(record) == []
        client.search.assert_not_called()

    def test_backend_error_raises_retrieval_error(self, mocker, source_record):
        client = mocker.MagicMock()
        client.search.side_effect = ESConnectionError("connection refused")

        with pytest.raises(RetrievalError):
            CandidateRetriever(client).find_candidates(source_record)

    @pytest.mark.parametrize("response", [{}, {"timed_out": True, "hits": {"hits": []}}])
    def test_invalid_response_raises_retrieval_error(self, mocker, source_record, response):
        client = mocker.MagicMock()
        client.search.return_value = response

        with pytest.raises(RetrievalError):
            CandidateRetriever(client).find_candidates(source_record)
