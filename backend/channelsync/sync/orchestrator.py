"""Adaptive bulk orchestrator.

Drives a desired state (sales channels or marketplace attributes) across many
entities. Work is split into chunks processed strictly one after another;
within a chunk, mutation documents are dispatched ``max_concurrent`` at a
time. After every chunk the success rate feeds a small proportional
controller that widens or narrows concurrency, and pacing delays grow as the
success rate drops.

Every input id ends up in exactly one of the outcome's succeeded/failed
lists. A failing entity or request never aborts the run; only setup failures
(no publication list) do.
"""

import asyncio
import inspect
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

import structlog

from channelsync.config import settings
from channelsync.core.exceptions import RemoteAPIError
from channelsync.sync.executor import RequestExecutor
from channelsync.sync.models import (
    BatchOutcome,
    BatchProgress,
    ChannelSet,
    DesiredState,
    OutcomeRecorder,
    normalize_entity_id,
)
from channelsync.sync.mutation_builder import BuildResult, MutationBuilder, MutationDocument
from channelsync.sync.publications import PublicationRegistry

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[BatchProgress], Union[None, Awaitable[None]]]

DEADLINE_EXCEEDED = "Not processed: deadline exceeded"
INVALID_ID = "Invalid product id"

# Pacing delays in seconds, keyed by success-rate band
SUBGROUP_DELAYS = {"low": 5.0, "partial": 2.0, "full": 1.0}
CHUNK_DELAYS = {"low": 10.0, "partial": 5.0, "full": 2.0}
CONCURRENCY_PENALTY_DELAY = 5.0

LOW_SUCCESS_RATE = 0.5
HIGH_SUCCESS_RATE = 0.9
FAILURE_STREAK_LIMIT = 2
SUCCESS_STREAK_LIMIT = 3


def success_band(rate: float) -> str:
    if rate < LOW_SUCCESS_RATE:
        return "low"
    if rate < 1.0:
        return "partial"
    return "full"


class ConcurrencyController:
    """Adjusts how many requests run at once from chunk success rates.

    Two consecutive chunks under 50% success narrow concurrency by one;
    three consecutive chunks over 90% widen it by one. The value never
    leaves [1, cap].
    """

    def __init__(self, initial: int = 2, cap: int = 3):
        self.cap = max(1, cap)
        self.max_concurrent = min(self.cap, max(1, initial))
        self.success_streak = 0
        self.failure_streak = 0

    def record_chunk(self, success_rate: float) -> bool:
        """Feed one chunk's success rate.

        Returns:
            True when concurrency was reduced and a penalty delay is due
        """
        if success_rate < LOW_SUCCESS_RATE:
            self.failure_streak += 1
            self.success_streak = 0
        elif success_rate > HIGH_SUCCESS_RATE:
            self.success_streak += 1
            self.failure_streak = 0
        else:
            self.success_streak = 0
            self.failure_streak = 0

        if self.failure_streak >= FAILURE_STREAK_LIMIT:
            self.failure_streak = 0
            if self.max_concurrent > 1:
                self.max_concurrent -= 1
                logger.info("concurrency_decreased", max_concurrent=self.max_concurrent)
            return True

        if self.success_streak >= SUCCESS_STREAK_LIMIT and self.max_concurrent < self.cap:
            self.success_streak = 0
            self.max_concurrent += 1
            logger.info("concurrency_increased", max_concurrent=self.max_concurrent)
        return False


class BulkOrchestrator:
    """Runs one desired-state mutation over a list of entities."""

    def __init__(
        self,
        executor: RequestExecutor,
        publications: PublicationRegistry,
        builder: Optional[MutationBuilder] = None,
        batch_size: Optional[int] = None,
        initial_concurrency: int = settings.INITIAL_CONCURRENCY,
        max_concurrency: int = settings.MAX_CONCURRENCY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize orchestrator.

        Args:
            executor: Request executor (shares the process-wide limiter)
            publications: Shared publication registry
            builder: Mutation builder, defaults to one built from settings
            batch_size: Chunk size; defaults per operation type from settings
            initial_concurrency: Concurrent requests at the start of a run
            max_concurrency: Upper bound for concurrent requests
            sleep: Async sleep used for pacing, injectable for tests
            clock: Monotonic clock used for deadlines
        """
        self.executor = executor
        self.publications = publications
        self.builder = builder or MutationBuilder()
        self.batch_size = batch_size
        self.initial_concurrency = initial_concurrency
        self.max_concurrency = max_concurrency
        self._sleep = sleep
        self._clock = clock
        self.logger = logger.bind(service="bulk_orchestrator")

    def _batch_size_for(self, desired_state: DesiredState) -> int:
        if self.batch_size:
            return self.batch_size
        if isinstance(desired_state, ChannelSet):
            return settings.CHANNEL_BATCH_SIZE
        return settings.ATTRIBUTE_BATCH_SIZE

    async def run(
        self,
        entity_ids: Sequence[str],
        desired_state: DesiredState,
        on_progress: Optional[ProgressCallback] = None,
        deadline: Optional[float] = None,
    ) -> BatchOutcome:
        """Apply ``desired_state`` to every entity.

        Args:
            entity_ids: Ids in bare numeric or fully-qualified form
            desired_state: ChannelSet, AttributeSet, or a mapping from
                normalized entity id to AttributeSet
            on_progress: Called (sync or async) after every chunk
            deadline: Clock value after which no further work is started

        Returns:
            Frozen BatchOutcome reporting ids in the caller's own form

        Raises:
            SetupError: If the publication list cannot be loaded
        """
        recorder = OutcomeRecorder()
        raw_forms: Dict[str, List[str]] = {}
        ordered: List[str] = []

        for raw in entity_ids:
            try:
                entity_id = normalize_entity_id(raw)
            except ValueError:
                recorder.record_failure(str(raw), INVALID_ID)
                continue
            if entity_id not in raw_forms:
                raw_forms[entity_id] = []
                ordered.append(entity_id)
            raw_forms[entity_id].append(str(raw))

        publication_ids: List[str] = []
        if isinstance(desired_state, ChannelSet):
            publication_ids, _unknown = await self.publications.resolve(
                self.executor, desired_state
            )

        batch_size = self._batch_size_for(desired_state)
        chunks = [ordered[i:i + batch_size] for i in range(0, len(ordered), batch_size)]
        total_batches = len(chunks)
        controller = ConcurrencyController(self.initial_concurrency, self.max_concurrency)

        def succeed(entity_id: str) -> None:
            for raw in raw_forms[entity_id]:
                recorder.record_success(raw)

        def fail(entity_id: str, reason: str) -> None:
            for raw in raw_forms[entity_id]:
                recorder.record_failure(raw, reason)

        self.logger.info(
            "bulk_run_started",
            entities=len(ordered),
            batches=total_batches,
            mode="channels" if isinstance(desired_state, ChannelSet) else "attributes",
        )

        for index, chunk in enumerate(chunks):
            batch_number = index + 1
            is_last_chunk = batch_number == total_batches

            if self._deadline_passed(deadline):
                for remaining in chunks[index:]:
                    for entity_id in remaining:
                        fail(entity_id, DEADLINE_EXCEEDED)
                self.logger.warning("bulk_run_deadline_exceeded", batch_number=batch_number)
                break

            build = self._build(chunk, desired_state, publication_ids)
            for entity_id in build.skipped_ids:
                succeed(entity_id)

            chunk_ok = len(build.skipped_ids)
            chunk_failed = 0
            documents = build.documents
            step = controller.max_concurrent

            for start in range(0, len(documents), step):
                if self._deadline_passed(deadline):
                    for document in documents[start:]:
                        for entity_id in document.entity_ids:
                            fail(entity_id, DEADLINE_EXCEEDED)
                            chunk_failed += 1
                    break

                group = documents[start:start + step]
                results = await asyncio.gather(*(self._dispatch(doc) for doc in group))

                group_ok = group_failed = 0
                for entity_results in results:
                    for entity_id, error in entity_results.items():
                        if error is None:
                            succeed(entity_id)
                            group_ok += 1
                        else:
                            fail(entity_id, error)
                            group_failed += 1
                chunk_ok += group_ok
                chunk_failed += group_failed

                if start + step < len(documents):
                    rate = group_ok / (group_ok + group_failed) if group_ok + group_failed else 1.0
                    await self._sleep(SUBGROUP_DELAYS[success_band(rate)])

            chunk_total = chunk_ok + chunk_failed
            chunk_rate = chunk_ok / chunk_total if chunk_total else 1.0
            penalty = controller.record_chunk(chunk_rate)

            self.logger.info(
                "chunk_completed",
                batch_number=batch_number,
                total_batches=total_batches,
                succeeded=chunk_ok,
                failed=chunk_failed,
                max_concurrent=controller.max_concurrent,
            )

            if on_progress is not None:
                progress = BatchProgress(
                    batch_number=batch_number,
                    total_batches=total_batches,
                    processed_count=len(recorder.succeeded) + len(recorder.failed),
                    success_count=len(recorder.succeeded),
                    failure_count=len(recorder.failed),
                )
                maybe_awaitable = on_progress(progress)
                if inspect.isawaitable(maybe_awaitable):
                    await maybe_awaitable

            # No remote calls in this chunk means nothing to pace against
            if is_last_chunk or not documents:
                continue
            if penalty:
                await self._sleep(CONCURRENCY_PENALTY_DELAY)
            await self._sleep(CHUNK_DELAYS[success_band(chunk_rate)])

        outcome = recorder.freeze()
        self.logger.info(
            "bulk_run_completed",
            succeeded=len(outcome.succeeded_ids),
            failed=len(outcome.failed_ids),
            reasons=len(outcome.failure_reasons),
        )
        return outcome

    def _deadline_passed(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self._clock() >= deadline

    def _build(
        self, chunk: List[str], desired_state: DesiredState, publication_ids: List[str]
    ) -> BuildResult:
        if isinstance(desired_state, ChannelSet):
            return self.builder.build_channel_documents(chunk, publication_ids)
        return self.builder.build_attribute_documents(chunk, desired_state)

    async def _dispatch(self, document: MutationDocument) -> Dict[str, Optional[str]]:
        """Send one document; a failed request fails every entity in it."""
        try:
            body = await self.executor.execute(document.to_payload())
        except RemoteAPIError as e:
            self.logger.warning(
                "mutation_request_failed",
                entities=len(document.entity_ids),
                error=e.message,
            )
            return {entity_id: e.message for entity_id in document.entity_ids}
        except Exception as e:
            self.logger.error(
                "mutation_request_crashed",
                entities=len(document.entity_ids),
                error=str(e),
                exc_info=True,
            )
            return {entity_id: f"Unexpected error: {e}" for entity_id in document.entity_ids}

        try:
            return document.entity_errors(body)
        except Exception as e:
            self.logger.error(
                "mutation_result_unreadable",
                entities=len(document.entity_ids),
                error=str(e),
                exc_info=True,
            )
            return {entity_id: f"Unreadable mutation result: {e}" for entity_id in document.entity_ids}
