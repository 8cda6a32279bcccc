"""Background matching process and its request/response protocol."""

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
import itertools
import logging
import multiprocessing
import queue
import threading

from config.models import (
    DEFAULT_CONFIG,
    MatchingConfig,
    MatchResult,
    MeetingCandidate,
    Schedule,
    UserCandidate
)
from core.matcher import MatchingService

logger = logging.getLogger(__name__)

NOT_INITIALIZED = "Matcher not initialized"
POLL_INTERVAL = 0.1


class MessageType(str, Enum):
    INIT = "INIT"
    READY = "READY"
    MATCH = "MATCH"
    MATCH_RESULT = "MATCH_RESULT"
    ERROR = "ERROR"
    SHUTDOWN = "SHUTDOWN"


@dataclass(frozen=True)
class Message:
    """A protocol message; only the fields of its type are filled."""
    type: MessageType
    request_id: int = 0
    meetings: Tuple[MeetingCandidate, ...] = ()
    users: Tuple[UserCandidate, ...] = ()
    schedules: Tuple[Schedule, ...] = ()
    results: Tuple[MatchResult, ...] = ()
    error: Optional[str] = None


class WorkerError(Exception):
    """The worker answered a request with an ERROR message."""


class WorkerTerminatedError(Exception):
    """The worker went away before answering."""


class WorkerState:
    """Request handler living inside the worker process."""

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.config = config
        self.matcher: Optional[MatchingService] = None

    def handle(self, message: Message) -> Message:
        """
        Answer one request.

        Args:
            message: INIT or MATCH request

        Returns:
            Message: READY, MATCH_RESULT or ERROR with the same request id
        """
        try:
            if message.type == MessageType.INIT:
                # Expensive: the index is built here
                self.matcher = None
                self.matcher = MatchingService(message.meetings, message.users, self.config)
                return Message(MessageType.READY, message.request_id)

            if message.type == MessageType.MATCH:
                if self.matcher is None:
                    raise RuntimeError(NOT_INITIALIZED)
                results = self.matcher.match_all(message.schedules)
                return Message(
                    MessageType.MATCH_RESULT,
                    message.request_id,
                    results=tuple(results)
                )

            raise ValueError(f"Unsupported message type: {message.type}")

        except Exception as e:
            logger.error(f"Worker failed on {message.type} #{message.request_id}: {e}")
            return Message(MessageType.ERROR, message.request_id, error=str(e))


def _serve(requests, responses, config: MatchingConfig) -> None:
    """Worker process main loop."""
    state = WorkerState(config)
    while True:
        message = requests.get()
        if message.type == MessageType.SHUTDOWN:
            break
        responses.put(state.handle(message))


class MatchingWorker:
    """
    Parent-side handle of the matching process.

    Requests are tagged with an id; a reader thread resolves the future
    registered for that id when the matching response arrives.
    """

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG, context=None):
        """
        Initialize the worker handle.

        Args:
            config: Matching configuration passed to the process
            context: multiprocessing context (default context if None)
        """
        ctx = context or multiprocessing.get_context()
        self.config = config
        self._requests = ctx.Queue()
        self._responses = ctx.Queue()
        self._process = ctx.Process(
            target=_serve,
            args=(self._requests, self._responses, config),
            name='matching-worker',
            daemon=True
        )
        self._reader = threading.Thread(
            target=self._read_responses,
            name='matching-worker-reader',
            daemon=True
        )
        self._pending: Dict[int, Future] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._stopped = threading.Event()

    def start(self) -> 'MatchingWorker':
        self._process.start()
        self._reader.start()
        logger.info(f"Matching worker started (pid {self._process.pid})")
        return self

    @property
    def is_alive(self) -> bool:
        return not self._stopped.is_set() and self._process.is_alive()

    @property
    def pending_requests(self) -> int:
        with self._lock:
            return len(self._pending)

    def post(self, message_type: MessageType, **payload: Any) -> Future:
        """
        Send a request and return the future of its response.

        Raises:
            WorkerTerminatedError: If the worker was already terminated
        """
        if self._stopped.is_set():
            raise WorkerTerminatedError("Matching worker is terminated")

        future: Future = Future()
        with self._lock:
            request_id = next(self._ids)
            self._pending[request_id] = future
        self._requests.put(Message(message_type, request_id, **payload))
        return future

    def initialize(
        self,
        meetings: Iterable[MeetingCandidate],
        users: Iterable[UserCandidate]
    ) -> Future:
        """Send INIT; the future resolves on READY."""
        return self.post(MessageType.INIT, meetings=tuple(meetings), users=tuple(users))

    def match(self, schedules: Iterable[Schedule]) -> Future:
        """Send MATCH; the future resolves with the MATCH_RESULT message."""
        return self.post(MessageType.MATCH, schedules=tuple(schedules))

    def _read_responses(self) -> None:
        while not self._stopped.is_set():
            try:
                message = self._responses.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if not self._process.is_alive():
                    self._fail_pending("Matching worker exited unexpectedly")
                    return
                continue
            except (EOFError, OSError, ValueError):
                return

            with self._lock:
                future = self._pending.pop(message.request_id, None)
            if future is None or future.done():
                logger.warning(f"Dropping unexpected {message.type} #{message.request_id}")
                continue

            if message.type == MessageType.ERROR:
                future.set_exception(WorkerError(message.error))
            else:
                future.set_result(message)

    def _fail_pending(self, reason: str) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(WorkerTerminatedError(reason))

    def terminate(self, graceful: bool = False, timeout: float = 2.0) -> None:
        """
        Stop the process; unanswered requests fail with WorkerTerminatedError.

        Args:
            graceful: Ask the loop to finish queued requests first
            timeout: Seconds to wait for the process to exit
        """
        if self._stopped.is_set():
            return

        if graceful and self._process.is_alive():
            self._requests.put(Message(MessageType.SHUTDOWN))
            self._process.join(timeout)
            # The reader drains what is left and stops once the process is gone
            if threading.current_thread() is not self._reader:
                self._reader.join(timeout)

        self._stopped.set()
        if self._process.is_alive():
            self._process.terminate()
        self._process.join(timeout)

        if self._reader.is_alive() and threading.current_thread() is not self._reader:
            self._reader.join(timeout)
        self._fail_pending("Matching worker terminated")

        for q in (self._requests, self._responses):
            q.close()
            q.cancel_join_thread()
        logger.info("Matching worker terminated")
