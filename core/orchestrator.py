"""Coordinates dataset refreshes, background matching and manual overrides."""

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading

from config.models import (
    DEFAULT_CONFIG,
    MatchingConfig,
    MatchResult,
    MeetingCandidate,
    Schedule,
    FoundInstructor,
    UserCandidate
)
from core.sources import CandidateSource, DataFetchError, records_by_id
from core.worker import (
    NOT_INITIALIZED,
    MatchingWorker,
    WorkerError,
    WorkerTerminatedError
)

logger = logging.getLogger(__name__)

__all__ = [
    'MatchingOrchestrator',
    'MatchingError',
    'DataFetchError',
    'WorkerError',
    'WorkerTerminatedError',
]


class MatchingError(Exception):
    """A batch could not be matched."""


class MatchingOrchestrator:
    """
    Owns the matching worker and the latest result set.

    Batches run one at a time on a single-thread executor, so a second
    batch queues behind the first instead of racing it on the worker.
    Overrides only touch the local result store.
    """

    def __init__(
        self,
        source: CandidateSource,
        config: Optional[MatchingConfig] = None,
        worker_factory: Callable[[MatchingConfig], MatchingWorker] = MatchingWorker
    ):
        """
        Initialize the orchestrator.

        Args:
            source: Provider of meeting and host snapshots
            config: Matching configuration (defaults if None)
            worker_factory: Builds an unstarted worker for a configuration
        """
        self.source = source
        self.config = config or DEFAULT_CONFIG
        self.worker_factory = worker_factory

        self.meetings: List[MeetingCandidate] = []
        self.users: List[UserCandidate] = []
        self.last_synced_at: Optional[datetime] = None

        self._hosts: Dict[str, UserCandidate] = {}
        self._worker: Optional[MatchingWorker] = None
        self._ready: Optional[Future] = None
        self._results: Dict[str, MatchResult] = {}
        self._order: List[str] = []
        self._is_loading = False
        self._pending_batches = 0

        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='matching-batch')

    # Context management

    def __enter__(self) -> 'MatchingOrchestrator':
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Drop queued batches and stop the worker."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        with self._lock:
            worker, self._worker, self._ready = self._worker, None, None
        if worker is not None:
            worker.terminate()

    # State

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_matching(self) -> bool:
        return self._pending_batches > 0

    @property
    def worker(self) -> Optional[MatchingWorker]:
        return self._worker

    @property
    def results(self) -> List[MatchResult]:
        with self._lock:
            return [self._results[key] for key in self._order]

    def get_result(self, schedule_key: str) -> MatchResult:
        """Raises KeyError for an unknown schedule key."""
        with self._lock:
            return self._results[schedule_key]

    def clear_results(self) -> None:
        with self._lock:
            self._results = {}
            self._order = []

    # Dataset refresh

    def fetch_data(self) -> bool:
        """
        Reload both datasets and rebuild the worker from them.

        Returns:
            bool: False when a fetch was already in progress and this call
            was ignored

        Raises:
            DataFetchError: If either dataset fails; loaded data is kept
        """
        with self._lock:
            if self._is_loading:
                logger.info("Fetch already in progress, skipping")
                return False
            self._is_loading = True

        try:
            with ThreadPoolExecutor(max_workers=2) as executor:
                meetings_future = executor.submit(self.source.fetch_meetings)
                users_future = executor.submit(self.source.fetch_users)
                try:
                    meetings = list(meetings_future.result())
                    users = list(users_future.result())
                except DataFetchError:
                    raise
                except Exception as e:
                    raise DataFetchError(f"Error fetching candidate data: {e}") from e

            with self._lock:
                self.meetings = meetings
                self.users = users
                self._hosts = records_by_id(users)
                self.last_synced_at = datetime.now(timezone.utc)
                self._init_worker(meetings, users)

            logger.info(f"Loaded {len(meetings)} meetings and {len(users)} users")
            return True

        except DataFetchError as e:
            logger.error(f"Error fetching candidate data: {e}")
            raise
        finally:
            with self._lock:
                self._is_loading = False

    def _init_worker(self, meetings: List[MeetingCandidate], users: List[UserCandidate]) -> None:
        """Replace the worker with a fresh one indexing the given snapshot."""
        with self._lock:
            old_worker, self._worker, self._ready = self._worker, None, None
            if old_worker is not None:
                old_worker.terminate()

            worker = self.worker_factory(self.config)
            worker.start()
            ready = worker.initialize(meetings, users)
            ready.add_done_callback(self._log_ready)
            self._worker, self._ready = worker, ready

    @staticmethod
    def _log_ready(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            logger.info("Matching worker ready")
        else:
            logger.error(f"Matching worker error: {error}")

    def _ensure_worker(self) -> Tuple[MatchingWorker, Future]:
        with self._lock:
            if self._worker is None or not self._worker.is_alive:
                logger.warning("Worker not found, re-initializing...")
                self._init_worker(self.meetings, self.users)
            return self._worker, self._ready

    def _discard_worker(self, worker: MatchingWorker) -> None:
        with self._lock:
            if self._worker is worker:
                self._worker, self._ready = None, None
        worker.terminate()

    # Matching

    def submit_matching(
        self,
        schedules: Iterable[Schedule],
        timeout: Optional[float] = None
    ) -> Future:
        """
        Queue a batch for matching without blocking.

        Args:
            schedules: Ordered schedule batch
            timeout: Seconds to wait for each worker response (no limit if None)

        Returns:
            Future: Resolves with the batch's results, in input order
        """
        schedules = list(schedules)
        with self._lock:
            self._pending_batches += 1
        try:
            future = self._executor.submit(self._run_batch, schedules, timeout)
        except RuntimeError:
            with self._lock:
                self._pending_batches -= 1
            raise MatchingError("Orchestrator is shut down")
        future.add_done_callback(self._batch_done)
        return future

    def run_matching(
        self,
        schedules: Iterable[Schedule],
        timeout: Optional[float] = None
    ) -> List[MatchResult]:
        """Match a batch and wait for its results."""
        return self.submit_matching(schedules, timeout).result()

    def _batch_done(self, future: Future) -> None:
        # Batches that ran already counted themselves out
        if future.cancelled():
            with self._lock:
                self._pending_batches -= 1

    def _run_batch(self, schedules: List[Schedule], timeout: Optional[float]) -> List[MatchResult]:
        try:
            return self._match_batch(schedules, timeout)
        finally:
            with self._lock:
                self._pending_batches -= 1

    def _match_batch(self, schedules: List[Schedule], timeout: Optional[float]) -> List[MatchResult]:
        for attempt in range(2):
            worker, ready = self._ensure_worker()

            try:
                ready.result(timeout)
            except WorkerError as e:
                # Initialization failed: leave the worker absent for the next call
                self._discard_worker(worker)
                raise MatchingError(f"Matching worker failed to initialize: {e}") from e
            except WorkerTerminatedError as e:
                raise MatchingError(f"Matching worker stopped during initialization: {e}") from e
            except FutureTimeoutError as e:
                raise MatchingError(f"Matching worker not ready after {timeout} seconds") from e

            try:
                response = worker.match(schedules).result(timeout)
            except WorkerError as e:
                if attempt == 0 and NOT_INITIALIZED in str(e):
                    logger.warning("Matcher not initialized, re-initializing worker")
                    self._discard_worker(worker)
                    continue
                raise MatchingError(f"Worker matching error: {e}") from e
            except WorkerTerminatedError as e:
                raise MatchingError(f"Matching worker stopped before answering: {e}") from e
            except FutureTimeoutError as e:
                raise MatchingError(f"No matching results after {timeout} seconds") from e

            results = list(response.results)
            self._store_results(results)
            return results

        raise MatchingError("Matching worker could not be initialized")

    def _store_results(self, results: List[MatchResult]) -> None:
        with self._lock:
            self._results = {r.schedule.key: r for r in results}
            self._order = list(self._results)

    # Manual overrides

    def resolve_conflict(self, schedule_key: str, meeting: MeetingCandidate) -> MatchResult:
        """
        Manually assign a meeting to a schedule.

        Args:
            schedule_key: ``Schedule.key`` of the result to override
            meeting: Meeting chosen by the user

        Returns:
            MatchResult: The overridden result, keeping the automatic one
            in ``original_state``

        Raises:
            KeyError: If no result exists for the key
        """
        with self._lock:
            current = self._results[schedule_key]
            host = self._hosts.get(meeting.host_id)
            instructor = FoundInstructor.from_user(host) if host else None
            updated = current.with_override(meeting, instructor)
            self._results[schedule_key] = updated
        logger.info(f"Schedule {schedule_key} manually assigned to meeting {meeting.meeting_id}")
        return updated

    def revert_override(self, schedule_key: str) -> MatchResult:
        """Restore the automatic result of an overridden schedule."""
        with self._lock:
            current = self._results[schedule_key]
            if current.original_state is None:
                return current
            self._results[schedule_key] = current.original_state
            return current.original_state
