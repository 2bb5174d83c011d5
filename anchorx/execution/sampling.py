"""Sampling service and label-scoped sampling sessions.

The service owns the two collaborators every evaluation needs, the
perturbation provider and the classifier, and exposes them to sessions with
concurrency limiting and an optional tenacity retry policy. A session turns
"keep these features fixed" plus a sample count into boolean outcomes (did the
classifier still predict the explained label?) and books them on the
candidate's evaluation state.

Usage::

    service = SamplingService(model.predict, provider, settings=settings)
    with service.create_session(label) as session:
        outcomes = session.sample(candidate, 100)

Concurrency
-----------
- Candidate level: :meth:`SamplingSession.run` dispatches one ``sample`` call
  per candidate onto a thread pool (``candidate_workers``).
- Sample level: a batch is split into ``sample_chunk_size`` chunks which are
  classified on a second pool (``sample_workers``).
- Classifier calls are gated by a service-wide semaphore holding
  ``model_parallelism`` permits, or one permit when ``model_reentrant`` is off.
- Pools passed in by the caller are never shut down here. Pools a session
  creates itself are shut down when the session closes.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

import numpy as np
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from anchorx.candidate import AnchorCandidate
from anchorx.config import Settings, get_settings
from anchorx.perturbation import PerturbationProvider, PerturbationResult

logger = logging.getLogger(__name__)

__all__ = ["PerturbationSizeError", "SamplingService", "SamplingSession"]

Classifier = Callable[[Any], Any]
SampleRequests = Union[Mapping[AnchorCandidate, int], Iterable[tuple[AnchorCandidate, int]]]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PerturbationSizeError(ValueError):
    """Raised when a provider returns a different number of perturbations than requested."""

    def __init__(self, requested: int, received: int) -> None:
        self.requested = requested
        self.received = received
        super().__init__(
            f"Requested {requested} perturbations but the provider returned {received}"
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class SamplingService:
    """Process-wide façade creating :class:`SamplingSession` objects.

    Parameters:
        classifier: Maps a batch of instances to predicted labels, or a single
            instance to its label when ``model_accepts_batches`` is off.
        perturbation: Provider already bound to the explained instance.
        settings: Execution settings; defaults to :func:`get_settings`.
        executor: Caller-owned pool for candidate-level dispatch.
        sample_executor: Caller-owned pool for chunk-level dispatch. Must not
            be the same pool as ``executor`` when both levels are used, since
            chunk tasks are submitted from inside candidate tasks.
    """

    def __init__(
        self,
        classifier: Classifier,
        perturbation: PerturbationProvider,
        *,
        settings: Optional[Settings] = None,
        executor: Optional[Executor] = None,
        sample_executor: Optional[Executor] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.executor = executor
        self.sample_executor = sample_executor
        self._classifier = classifier
        self._perturbation = perturbation

        permits = self.settings.model_parallelism if self.settings.model_reentrant else 1
        self._model_gate = threading.BoundedSemaphore(permits)

        self._time_lock = threading.Lock()
        self._time_spent = 0.0

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def time_spent_sampling(self) -> float:
        """Cumulative seconds spent inside sampling calls of all sessions.

        May be read while sampling is in progress; it lags running calls.
        """
        return self._time_spent

    def create_session(self, label: Any) -> "SamplingSession":
        """Create a session bound to the explained instance's *label*."""
        logger.debug("Opening sampling session for label %r", label)
        return SamplingSession(self, label)

    # -----------------------------------------------------------------------
    # Collaborator access (used by sessions)
    # -----------------------------------------------------------------------

    def perturb(self, fixed_features: frozenset[int], count: int) -> PerturbationResult:
        """Ask the provider for *count* perturbations under the retry policy."""
        return self._retrying()(self._perturbation.perturb, fixed_features, count)

    def predict(self, instances: Sequence[Any]) -> np.ndarray:
        """Classify *instances*, holding one model permit for the whole call.

        Raises:
            ValueError: If the classifier returns a different number of labels.
        """
        retrying = self._retrying()
        with self._model_gate:
            if self.settings.model_accepts_batches:
                labels = retrying(self._classifier, instances)
            else:
                labels = [retrying(self._classifier, instance) for instance in instances]
        labels = np.asarray(labels).ravel()
        if len(labels) != len(instances):
            raise ValueError(
                f"Classifier returned {len(labels)} labels for {len(instances)} instances"
            )
        return labels

    def record_time(self, seconds: float) -> None:
        with self._time_lock:
            self._time_spent += seconds

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _retrying(self) -> Retrying:
        """Build the single retry policy applied to collaborator calls.

        Configuration errors (``ValueError``/``TypeError``) are never retried.
        With ``sampling_retries=0`` the call is attempted exactly once.
        """
        return Retrying(
            stop=stop_after_attempt(self.settings.sampling_retries + 1),
            wait=wait_exponential(multiplier=self.settings.retry_wait_seconds, max=10),
            retry=retry_if_not_exception_type((ValueError, TypeError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SamplingSession:
    """Sampling context for one explained label.

    Use as a context manager so that any pool the session created is released::

        with service.create_session(label) as session:
            session.run({a: 100, b: 100})
    """

    def __init__(self, service: SamplingService, label: Any) -> None:
        self.service = service
        self.label = label
        self._closed = False
        self._pool_lock = threading.Lock()
        self._candidate_pool: Optional[ThreadPoolExecutor] = None
        self._sample_pool: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "SamplingSession":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the session and shut down the pools it created."""
        self._closed = True
        with self._pool_lock:
            owned = [p for p in (self._candidate_pool, self._sample_pool) if p is not None]
            self._candidate_pool = self._sample_pool = None
        for pool in owned:
            pool.shutdown(wait=True, cancel_futures=True)

    # -----------------------------------------------------------------------
    # Sampling
    # -----------------------------------------------------------------------

    def sample(self, candidate: AnchorCandidate, n: int) -> np.ndarray:
        """Evaluate *n* perturbations keeping the candidate's features fixed.

        Books ``n`` samples and the number of matching predictions on
        ``candidate.state``.

        Returns:
            Boolean array of length *n*; true where the prediction matched
            the session label.

        Raises:
            ValueError: If ``n <= 0``.
            PerturbationSizeError: If the provider returned a batch of the
                wrong size.
            RuntimeError: If the session is closed.
        """
        self._ensure_open()
        if n <= 0:
            raise ValueError(f"Sample count must be positive, got {n}")

        t0 = time.perf_counter()
        try:
            result = self.service.perturb(candidate.canonical_features, n)
            if len(result) != n:
                raise PerturbationSizeError(n, len(result))
            predictions = self._classify(result.raw_result)
            outcomes = np.asarray(predictions == self.label, dtype=bool)
            candidate.state.register_samples(n, int(np.count_nonzero(outcomes)))
            return outcomes
        finally:
            self.service.record_time(time.perf_counter() - t0)

    def run(
        self,
        requests: SampleRequests,
        *,
        timeout: Optional[float] = None,
    ) -> dict[AnchorCandidate, np.ndarray]:
        """Sample several candidates, in parallel when a candidate pool exists.

        Blocks until every request finished. With *timeout*, requests that
        have not started by the deadline are cancelled and running ones are
        allowed to finish; only completed requests appear in the result.

        Raises:
            Exception: The first failure of any request, after the remaining
                requests were cancelled or finished.
        """
        self._ensure_open()
        items = list(requests.items()) if isinstance(requests, Mapping) else list(requests)
        pool = self._candidate_executor()

        if pool is None or len(items) <= 1:
            return self._run_inline(items, timeout)

        futures: dict[Future, AnchorCandidate] = {
            pool.submit(self.sample, candidate, n): candidate for candidate, n in items
        }
        done, pending = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)
        if pending:
            for future in pending:
                future.cancel()
            finished, _ = wait(pending)
            done = done | finished

        completed = [f for f in futures if f in done and not f.cancelled()]
        for future in completed:
            exc = future.exception()
            if exc is not None:
                raise exc
        if len(completed) < len(futures):
            logger.debug(
                "Sampling round cut short: %d of %d requests completed",
                len(completed), len(futures),
            )
        return {futures[f]: f.result() for f in completed}

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _run_inline(
        self,
        items: list[tuple[AnchorCandidate, int]],
        timeout: Optional[float],
    ) -> dict[AnchorCandidate, np.ndarray]:
        deadline = None if timeout is None else time.monotonic() + timeout
        results: dict[AnchorCandidate, np.ndarray] = {}
        for candidate, n in items:
            if deadline is not None and time.monotonic() >= deadline:
                break
            results[candidate] = self.sample(candidate, n)
        return results

    def _classify(self, instances: Sequence[Any]) -> np.ndarray:
        chunk_size = self.service.settings.sample_chunk_size
        if chunk_size is None or chunk_size >= len(instances):
            return self.service.predict(instances)

        chunks = [instances[i:i + chunk_size] for i in range(0, len(instances), chunk_size)]
        pool = self._sample_executor()
        if pool is None:
            parts = [self.service.predict(chunk) for chunk in chunks]
        else:
            parts = list(pool.map(self.service.predict, chunks))
        return np.concatenate(parts)

    def _candidate_executor(self) -> Optional[Executor]:
        if self.service.executor is not None:
            return self.service.executor
        workers = self.service.settings.candidate_workers
        if workers <= 1:
            return None
        with self._pool_lock:
            if self._candidate_pool is None:
                self._candidate_pool = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix="anchorx-candidate"
                )
            return self._candidate_pool

    def _sample_executor(self) -> Optional[Executor]:
        if self.service.sample_executor is not None:
            return self.service.sample_executor
        workers = self.service.settings.sample_workers
        if workers <= 1:
            return None
        with self._pool_lock:
            if self._sample_pool is None:
                self._sample_pool = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix="anchorx-sample"
                )
            return self._sample_pool

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Sampling session for label {self.label!r} is closed")
