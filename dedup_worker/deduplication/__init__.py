"""
Deduplication pipeline components.

These modules decide which search candidates are probable duplicates of an
incoming customer record, persist those suspicions and announce them.
"""

from dedup_worker.deduplication.analyzer import AnalysisResult, DuplicateAnalyzer
from dedup_worker.deduplication.similarity import (
    SimilarityEvaluator,
    original_value_for_field,
    username_similar,
)
from dedup_worker.deduplication.store import SuspicionStore

__all__ = [
    "AnalysisResult",
    "DuplicateAnalyzer",
    "SimilarityEvaluator",
    "SuspicionStore",
    "original_value_for_field",
    "username_similar",
]
