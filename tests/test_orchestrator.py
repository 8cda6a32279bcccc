"""Tests for the matching orchestrator."""

from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
import threading

import pytest

from config.models import MatchStatus, Schedule
from core.orchestrator import MatchingError, MatchingOrchestrator
from core.sources import DataFetchError, StaticSource
from core.worker import (
    NOT_INITIALIZED,
    Message,
    MessageType,
    WorkerError,
    WorkerState,
    WorkerTerminatedError
)
from conftest import make_meeting

TIMEOUT = 60


class InlineWorker:
    """Worker stand-in answering requests synchronously in this process."""

    instances = []

    def __init__(self, config, fail_init=False, forget_init=False):
        self.state = WorkerState(config)
        self.fail_init = fail_init
        self.forget_init = forget_init
        self.started = False
        self.terminated = False
        self.requests = []
        InlineWorker.instances.append(self)

    def start(self):
        self.started = True
        return self

    @property
    def is_alive(self):
        return self.started and not self.terminated

    def _answer(self, message):
        future = Future()
        response = self.state.handle(message)
        if response.type == MessageType.ERROR:
            future.set_exception(WorkerError(response.error))
        else:
            future.set_result(response)
        return future

    def initialize(self, meetings, users):
        self.requests.append(MessageType.INIT)
        if self.fail_init:
            future = Future()
            future.set_exception(WorkerError('index build failed'))
            return future
        future = self._answer(Message(MessageType.INIT, meetings=tuple(meetings), users=tuple(users)))
        if self.forget_init:
            self.state.matcher = None
        return future

    def match(self, schedules):
        if self.terminated:
            raise WorkerTerminatedError('terminated')
        self.requests.append(MessageType.MATCH)
        return self._answer(Message(MessageType.MATCH, schedules=tuple(schedules)))

    def terminate(self, graceful=False, timeout=2.0):
        self.terminated = True


class StoppingWorker(InlineWorker):
    """Goes away while a batch waits for its answer."""

    def match(self, schedules):
        future = Future()
        future.set_exception(WorkerTerminatedError('Matching worker terminated'))
        return future


class SilentWorker(InlineWorker):
    """Accepts batches and never answers them."""

    def match(self, schedules):
        return Future()


class FailingSource:
    def fetch_meetings(self):
        raise ConnectionError('database unreachable')

    def fetch_users(self):
        return []


@pytest.fixture(autouse=True)
def reset_instances():
    InlineWorker.instances = []


@pytest.fixture
def orchestrator(meetings, users):
    orchestrator = MatchingOrchestrator(StaticSource(meetings, users), worker_factory=InlineWorker)
    yield orchestrator
    orchestrator.shutdown()


class TestFetchData:
    """Dataset refresh."""

    def test_loads_data_and_starts_worker(self, orchestrator, meetings, users):
        assert orchestrator.fetch_data() is True
        assert orchestrator.meetings == meetings
        assert orchestrator.users == users
        assert orchestrator.last_synced_at is not None
        assert orchestrator.worker is InlineWorker.instances[0]
        assert not orchestrator.is_loading

    def test_refresh_replaces_worker(self, orchestrator):
        orchestrator.fetch_data()
        orchestrator.fetch_data()
        first, second = InlineWorker.instances
        assert first.terminated
        assert orchestrator.worker is second

    def test_concurrent_fetch_is_ignored(self, meetings, users):
        entered = threading.Event()
        release = threading.Event()

        class SlowSource(StaticSource):
            def fetch_meetings(self):
                entered.set()
                release.wait(TIMEOUT)
                return super().fetch_meetings()

        orchestrator = MatchingOrchestrator(SlowSource(meetings, users), worker_factory=InlineWorker)
        outcome = {}
        thread = threading.Thread(target=lambda: outcome.setdefault('first', orchestrator.fetch_data()))
        thread.start()
        entered.wait(TIMEOUT)

        assert orchestrator.is_loading
        assert orchestrator.fetch_data() is False

        release.set()
        thread.join(TIMEOUT)
        assert outcome['first'] is True
        assert len(InlineWorker.instances) == 1
        orchestrator.shutdown()

    def test_failed_fetch_keeps_previous_data(self, meetings, users):
        orchestrator = MatchingOrchestrator(StaticSource(meetings, users), worker_factory=InlineWorker)
        orchestrator.fetch_data()
        worker = orchestrator.worker

        orchestrator.source = FailingSource()
        with pytest.raises(DataFetchError, match='database unreachable'):
            orchestrator.fetch_data()

        assert orchestrator.meetings == meetings
        assert orchestrator.worker is worker
        assert not worker.terminated
        assert not orchestrator.is_loading
        orchestrator.shutdown()


class TestRunMatching:
    """Batches through the worker."""

    def test_results_are_stored_in_order(self, orchestrator, schedules):
        orchestrator.fetch_data()
        results = orchestrator.run_matching(schedules, timeout=TIMEOUT)

        assert [r.schedule for r in results] == schedules
        assert orchestrator.results == results
        assert orchestrator.get_result(schedules[0].key).status == MatchStatus.ASSIGNED
        assert not orchestrator.is_matching

    def test_missing_worker_is_initialized(self, orchestrator, schedules):
        results = orchestrator.run_matching(schedules, timeout=TIMEOUT)
        assert len(results) == len(schedules)
        assert len(InlineWorker.instances) == 1

    def test_uninitialized_matcher_is_retried_once(self, meetings, users, schedules):
        attempts = []

        def factory(config):
            attempts.append(config)
            return InlineWorker(config, forget_init=len(attempts) == 1)

        orchestrator = MatchingOrchestrator(StaticSource(meetings, users), worker_factory=factory)
        orchestrator.fetch_data()
        results = orchestrator.run_matching(schedules, timeout=TIMEOUT)

        assert len(results) == len(schedules)
        assert len(attempts) == 2
        assert InlineWorker.instances[0].terminated
        orchestrator.shutdown()

    def test_persistent_uninitialized_matcher_gives_up(self, meetings, users, schedules):
        orchestrator = MatchingOrchestrator(
            StaticSource(meetings, users),
            worker_factory=lambda config: InlineWorker(config, forget_init=True)
        )
        orchestrator.fetch_data()
        with pytest.raises(MatchingError, match=NOT_INITIALIZED):
            orchestrator.run_matching(schedules, timeout=TIMEOUT)
        assert len(InlineWorker.instances) == 2
        orchestrator.shutdown()

    def test_init_failure_leaves_worker_absent(self, meetings, users, schedules):
        orchestrator = MatchingOrchestrator(
            StaticSource(meetings, users),
            worker_factory=lambda config: InlineWorker(config, fail_init=True)
        )
        orchestrator.fetch_data()
        with pytest.raises(MatchingError, match='index build failed'):
            orchestrator.run_matching(schedules, timeout=TIMEOUT)

        assert orchestrator.worker is None
        assert InlineWorker.instances[0].requests == [MessageType.INIT]
        orchestrator.shutdown()

    def test_worker_stopped_mid_batch(self, meetings, users, schedules):
        orchestrator = MatchingOrchestrator(StaticSource(meetings, users), worker_factory=StoppingWorker)
        orchestrator.fetch_data()
        with pytest.raises(MatchingError, match='stopped before answering') as excinfo:
            orchestrator.run_matching(schedules, timeout=TIMEOUT)

        assert isinstance(excinfo.value.__cause__, WorkerTerminatedError)
        assert not orchestrator.is_matching
        orchestrator.shutdown()

    def test_batch_timeout(self, meetings, users, schedules):
        orchestrator = MatchingOrchestrator(StaticSource(meetings, users), worker_factory=SilentWorker)
        orchestrator.fetch_data()
        with pytest.raises(MatchingError, match='No matching results') as excinfo:
            orchestrator.run_matching(schedules, timeout=0.05)

        assert isinstance(excinfo.value.__cause__, FutureTimeoutError)
        assert orchestrator.results == []
        orchestrator.shutdown()

    def test_batches_run_one_at_a_time(self, orchestrator, schedules):
        orchestrator.fetch_data()
        futures = [orchestrator.submit_matching(schedules[:n]) for n in (1, 2, 3)]
        assert [len(f.result(TIMEOUT)) for f in futures] == [1, 2, 3]
        assert len(orchestrator.results) == 3

    def test_duplicate_keys_collapse(self, orchestrator, schedules):
        orchestrator.fetch_data()
        results = orchestrator.run_matching([schedules[0], schedules[1], schedules[0]], timeout=TIMEOUT)

        assert len(results) == 3
        assert [r.schedule for r in orchestrator.results] == [schedules[0], schedules[1]]

    def test_submit_after_shutdown(self, orchestrator, schedules):
        orchestrator.shutdown()
        with pytest.raises(MatchingError):
            orchestrator.submit_matching(schedules)


class TestOverrides:
    """Manual assignment and revert."""

    def test_resolve_conflict(self, orchestrator, schedules, meetings):
        orchestrator.fetch_data()
        orchestrator.run_matching(schedules, timeout=TIMEOUT)
        key = schedules[1].key
        automatic = orchestrator.get_result(key)

        updated = orchestrator.resolve_conflict(key, meetings[4])

        assert updated.status == MatchStatus.MANUAL
        assert updated.manual_mode
        assert updated.reason == 'Manually Assigned'
        assert updated.meeting_id == 'm5'
        assert updated.matched_candidate == meetings[4]
        assert updated.best_match == meetings[4]
        assert updated.found_instructor.display_name == 'Eva Ruiz'
        assert updated.original_state == automatic
        assert orchestrator.get_result(key) is updated
        assert orchestrator.results[1] is updated
        assert orchestrator.results[0].status == MatchStatus.ASSIGNED

    def test_second_override_keeps_first_automatic_state(self, orchestrator, schedules, meetings):
        orchestrator.fetch_data()
        orchestrator.run_matching(schedules, timeout=TIMEOUT)
        key = schedules[1].key
        automatic = orchestrator.get_result(key)

        orchestrator.resolve_conflict(key, meetings[3])
        updated = orchestrator.resolve_conflict(key, meetings[4])

        assert updated.meeting_id == 'm5'
        assert updated.original_state == automatic
        assert updated.original_state.original_state is None

    def test_revert_override(self, orchestrator, schedules, meetings):
        orchestrator.fetch_data()
        orchestrator.run_matching(schedules, timeout=TIMEOUT)
        key = schedules[1].key
        automatic = orchestrator.get_result(key)

        orchestrator.resolve_conflict(key, meetings[4])
        assert orchestrator.revert_override(key) == automatic
        assert orchestrator.get_result(key).status == MatchStatus.AMBIGUOUS
        assert orchestrator.revert_override(key) == automatic

    def test_unknown_key(self, orchestrator):
        with pytest.raises(KeyError):
            orchestrator.resolve_conflict('missing', make_meeting('m1', 'APP'))

    def test_clear_results(self, orchestrator, schedules):
        orchestrator.fetch_data()
        orchestrator.run_matching(schedules, timeout=TIMEOUT)
        orchestrator.clear_results()
        assert orchestrator.results == []


def test_end_to_end_with_background_process(meetings, users, schedules):
    with MatchingOrchestrator(StaticSource(meetings, users)) as orchestrator:
        orchestrator.fetch_data()
        results = orchestrator.run_matching(schedules, timeout=TIMEOUT)

        assert [r.status for r in results] == [
            MatchStatus.ASSIGNED,
            MatchStatus.AMBIGUOUS,
            MatchStatus.NOT_FOUND,
            MatchStatus.TO_UPDATE,
        ]
        assert orchestrator.worker.is_alive

    assert orchestrator.worker is None
