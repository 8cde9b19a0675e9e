"""
Duplicate analysis for one customer event.

DuplicateAnalyzer is the consumer's handler. For each event it searches for
candidates, evaluates them one by one, stages and announces the accepted
ones and commits the staged suspicions once at the end.
"""

import uuid
from dataclasses import dataclass, field

from loguru import logger

from dedup_worker.config import settings
from dedup_worker.deduplication.similarity import SimilarityEvaluator
from dedup_worker.deduplication.store import SuspicionStore
from dedup_worker.exceptions import ConnectionFatalError, InvalidIdentityError, PublishError
from dedup_worker.messaging.publisher import DuplicateEventPublisher
from dedup_worker.models import CandidateHit, DuplicateEvent, InboundEvent, SourceRecord, SuspicionRecord
from dedup_worker.search import CandidateRetriever


@dataclass
class AnalysisResult:
    """Outcome of analyzing one event."""
    event_id: uuid.UUID
    customer_id: uuid.UUID | None = None
    hits: int = 0
    suspicions: list[SuspicionRecord] = field(default_factory=list)
    published: list[DuplicateEvent] = field(default_factory=list)
    failed_hits: int = 0
    skipped: bool = False


class DuplicateAnalyzer:
    """
    Runs the duplicate-detection pipeline for customer events.

    Publishing modes:
    - eager (default): each accepted candidate is announced right after it is
      staged, before the commit. A downstream event can therefore exist for a
      suspicion whose commit later fails.
    - publish_after_commit: announcements wait until the commit succeeded, so
      nothing is announced for rolled-back suspicions.

    A failure while handling one candidate is logged and the remaining
    candidates are still evaluated. Search and commit failures abort the
    event so the broker redelivers it.
    """

    def __init__(
        self,
        retriever: CandidateRetriever,
        evaluator: SimilarityEvaluator,
        store: SuspicionStore,
        publisher: DuplicateEventPublisher,
        publish_after_commit: bool | None = None,
        skip_existing: bool | None = None,
    ):
        self.retriever = retriever
        self.evaluator = evaluator
        self.store = store
        self.publisher = publisher
        self.publish_after_commit = (
            settings.worker.publish_after_commit if publish_after_commit is None else publish_after_commit
        )
        self.skip_existing = (
            settings.worker.skip_existing_suspicions if skip_existing is None else skip_existing
        )

    def __call__(self, event: InboundEvent) -> AnalysisResult:
        return self.handle(event)

    @staticmethod
    def source_of(event: InboundEvent) -> SourceRecord:
        """Return the event's customer record, raising InvalidIdentityError when it has no usable id."""
        source = event.data
        if source is None or not source.has_identity:
            raise InvalidIdentityError(f"Event {event.event_id} has no valid customer id", event_id=event.event_id)
        return source

    def handle(self, event: InboundEvent) -> AnalysisResult:
        """
        Analyze one event.

        Raises:
            RetrievalError: Search failed; the event should be redelivered
            PersistenceError: Commit failed; the event should be redelivered
            ConnectionFatalError: The broker is gone for good
        """
        try:
            source = self.source_of(event)
        except InvalidIdentityError as exc:
            logger.warning(f"{exc}; ignoring")
            return AnalysisResult(event_id=event.event_id, skipped=True)

        result = AnalysisResult(event_id=event.event_id, customer_id=source.customer_id)
        logger.info(f"Analyzing customer {source.customer_id} (event {event.event_id}, {event.event_type})")

        # Anything left over belongs to an aborted event
        self.store.discard()

        candidates = self.retriever.find_candidates(source)
        result.hits = len(candidates)

        deferred: list[CandidateHit] = []

        for hit in candidates:
            try:
                suspicion = self.evaluator.evaluate(source, hit)
                if suspicion is None:
                    continue

                if self.skip_existing and self.store.exists(suspicion.original_id, suspicion.suspect_id):
                    logger.info(f"Suspicion {suspicion.original_id} ~ {suspicion.suspect_id} already stored; skipping")
                    continue

                self.store.stage(suspicion)
                result.suspicions.append(suspicion)

                if self.publish_after_commit:
                    deferred.append(hit)
                else:
                    result.published.append(self.publisher.publish(hit))
            except ConnectionFatalError:
                raise
            except Exception as exc:
                result.failed_hits += 1
                logger.opt(exception=exc).error(
                    f"Failed to process candidate {hit.candidate_id} (score={hit.relevance_score}) "
                    f"for customer {source.customer_id}"
                )

        self.store.commit_all()

        for hit in deferred:
            try:
                result.published.append(self.publisher.publish(hit))
            except PublishError as exc:
                result.failed_hits += 1
                logger.error(f"Suspicion for candidate {hit.candidate_id} stored but not announced: {exc}")

        logger.info(
            f"Customer {source.customer_id}: {result.hits} hits, {len(result.suspicions)} suspicions, "
            f"{len(result.published)} published, {result.failed_hits} failed"
        )
        return result
