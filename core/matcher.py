"""Matching service linking schedules to meeting candidates."""

from typing import Dict, Iterable, List, Optional, Sequence
import logging
import time
import traceback

from config.models import (
    DEFAULT_CONFIG,
    Decision,
    FoundInstructor,
    MatchingConfig,
    MatchResult,
    MatchStatus,
    MeetingCandidate,
    Schedule,
    ScoringResult,
    UserCandidate
)
from core.decision import MatchDecision, evaluate_match
from core.index import CandidateIndex
from core.normalizer import get_normalizer
from core.scoring import ScoringEngine
from core.sources import records_by_id


def format_penalties(result: Optional[ScoringResult]) -> Optional[str]:
    """One ``NAME (points): reason`` line per applied penalty."""
    if result is None or not result.penalties:
        return None
    lines = []
    for penalty in result.penalties:
        line = f"{penalty.name} ({penalty.points})"
        if penalty.reason:
            line += f": {penalty.reason}"
        lines.append(line)
    return '\n'.join(lines)


class MatchingService:
    """
    Matches schedules against one snapshot of meetings and hosts.

    The index is built once in the constructor; ``match_all`` is plain
    synchronous CPU work over data already in memory.
    """

    def __init__(
        self,
        meetings: Iterable[MeetingCandidate],
        users: Iterable[UserCandidate],
        config: Optional[MatchingConfig] = None,
        engine: Optional[ScoringEngine] = None
    ):
        """
        Initialize the matching service.

        Args:
            meetings: Meeting snapshot
            users: Host snapshot used to resolve instructors
            config: Matching configuration (engine's or default if None)
            engine: Scoring engine (default rules for ``config`` if None)

        Raises:
            ValueError: If both are given and the engine uses another configuration
        """
        if config is not None and engine is not None and engine.config != config:
            raise ValueError("Scoring engine was built for a different matching configuration")
        self.config = config or (engine.config if engine else DEFAULT_CONFIG)
        self.engine = engine or ScoringEngine(config=self.config)
        self.normalizer = get_normalizer(self.config.irrelevant_words)

        self._initialize_logging()

        self.index = CandidateIndex(meetings, self.config)
        self.hosts: Dict[str, UserCandidate] = records_by_id(users)

    def _initialize_logging(self) -> None:
        """Setup logging configuration."""
        self.logger = logging.getLogger(__name__)
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    '%(asctime)s - %(levelname)s - %(message)s'
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    @property
    def fingerprint(self) -> str:
        return self.index.fingerprint

    def find_instructor(self, meeting: Optional[MeetingCandidate]) -> Optional[FoundInstructor]:
        """Resolve a meeting's host into an instructor reference."""
        if meeting is None:
            return None
        user = self.hosts.get(meeting.host_id)
        return FoundInstructor.from_user(user) if user else None

    def _same_person(self, scheduled: str, instructor: FoundInstructor) -> bool:
        """Compare names ignoring case, accents, punctuation and word order."""
        if self.normalizer.canonical(scheduled) == self.normalizer.canonical(instructor.display_name):
            return True
        return set(self.normalizer.tokenize(scheduled)) == set(
            self.normalizer.tokenize(instructor.display_name)
        )

    def match_all(self, schedules: Sequence[Schedule]) -> List[MatchResult]:
        """
        Match every schedule of a batch.

        Args:
            schedules: Ordered schedule batch

        Returns:
            List[MatchResult]: One result per schedule, in input order
        """
        start_time = time.time()
        results = []

        for schedule in schedules:
            try:
                results.append(self.match_schedule(schedule))
            except Exception as e:
                self.logger.warning(
                    f"Error matching schedule {schedule.key}: {traceback.format_exc()}"
                )
                results.append(MatchResult(
                    schedule=schedule,
                    status=MatchStatus.NOT_FOUND,
                    reason='Matching error',
                    detailed_reason=str(e)
                ))

        self.logger.info(
            f"Matched {len(results)} schedules in {time.time() - start_time:.2f} seconds"
        )
        return results

    def match_schedule(self, schedule: Schedule) -> MatchResult:
        """Shortlist, score and decide for a single schedule."""
        shortlist = [c for c, _ in self.index.search(schedule.program)]
        decision = evaluate_match(schedule.program, shortlist, self.engine, self.config)
        return self._create_result_record(schedule, decision)

    def _create_result_record(self, schedule: Schedule, decision: MatchDecision) -> MatchResult:
        """Project a decision into a result record."""
        candidates = tuple(r.candidate for r in decision.all_results)
        top = decision.top
        detailed_reason = format_penalties(top)

        if decision.decision == Decision.NOT_FOUND:
            if not candidates:
                return MatchResult(
                    schedule=schedule,
                    status=MatchStatus.NOT_FOUND,
                    reason='No candidates found',
                    detailed_reason=f"No meeting topic resembles '{schedule.program}'"
                )
            return MatchResult(
                schedule=schedule,
                status=MatchStatus.NOT_FOUND,
                reason='All candidates disqualified',
                detailed_reason=detailed_reason,
                candidates=candidates,
                score=0
            )

        if decision.decision == Decision.AMBIGUOUS:
            ties = tuple(r.candidate for r in decision.near_ties())
            return MatchResult(
                schedule=schedule,
                status=MatchStatus.AMBIGUOUS,
                reason="Candidates with similar scores",
                detailed_reason=detailed_reason,
                best_match=decision.best_match,
                candidates=candidates,
                ambiguous_candidates=ties,
                score=top.final_score
            )

        meeting = decision.best_match
        instructor = self.find_instructor(meeting)
        status = MatchStatus.ASSIGNED
        reason = f"Matched with {decision.confidence.value} confidence"
        if (instructor is not None and schedule.instructor
                and not self._same_person(schedule.instructor, instructor)):
            status = MatchStatus.TO_UPDATE
            reason = f"Meeting hosted by {instructor.display_name}"

        return MatchResult(
            schedule=schedule,
            status=status,
            reason=reason,
            detailed_reason=detailed_reason,
            meeting_id=meeting.meeting_id,
            found_instructor=instructor,
            best_match=meeting,
            candidates=candidates,
            matched_candidate=meeting,
            score=top.final_score
        )
