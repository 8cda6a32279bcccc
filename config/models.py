"""Configuration and record models for the schedule matching system."""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple
from enum import Enum
from datetime import datetime
import re

from dateutil import parser


@dataclass(frozen=True)
class CriticalCategory:
    """A family of mutually exclusive markers (group size, level, ...)."""
    name: str
    pattern: str  # Matched against single normalized tokens

    def markers(self, tokens: List[str]) -> frozenset:
        """Return the tokens that belong to this category."""
        compiled = re.compile(self.pattern)
        return frozenset(token for token in tokens if compiled.fullmatch(token))


DEFAULT_IRRELEVANT_WORDS = (
    'ONLINE',
    'PER',
    'F2F',
    'PRESENCIAL',
    'VIRTUAL',
    'ZOOM',
)

DEFAULT_CRITICAL_CATEGORIES = (
    CriticalCategory('group_size', r'individual|duo|trio|cuarteto|quinteto'),
    CriticalCategory('level', r'l\d{1,2}'),
)


@dataclass(frozen=True)
class MatchingConfig:
    """Constants driving normalization, scoring, decisions and retrieval."""
    base_score: int = 100
    ambiguity_diff: int = 10
    high_confidence_drop: int = 15    # Max points lost for a high confidence match
    medium_confidence_drop: int = 40  # Max points lost for a medium confidence match
    critical_penalty: int = -1000
    lexical_weight: int = 40
    missing_token_penalty: int = -10
    extra_token_penalty: int = -3
    competing_match_penalty: int = -20
    token_similarity: float = 0.8
    irrelevant_words: Tuple[str, ...] = DEFAULT_IRRELEVANT_WORDS
    critical_categories: Tuple[CriticalCategory, ...] = DEFAULT_CRITICAL_CATEGORIES
    shortlist_size: int = 8
    retrieval_floor: float = 0.25
    ngram_range: Tuple[int, int] = (2, 4)

    def __post_init__(self):
        """Reject settings that would break the score invariants."""
        if self.base_score <= 0:
            raise ValueError("base_score must be positive")
        if self.critical_penalty > -self.base_score:
            raise ValueError(
                "critical_penalty must be large enough to disqualify on its own"
            )
        if not 0 <= self.retrieval_floor <= 1:
            raise ValueError("retrieval_floor must be between 0 and 1")
        if self.shortlist_size < 1:
            raise ValueError("shortlist_size must be at least 1")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'MatchingConfig':
        """
        Build a configuration from plain settings values.

        Args:
            values: Setting names mapped to values; missing names keep defaults

        Returns:
            MatchingConfig: The resulting configuration

        Raises:
            ValueError: If an unknown setting is given
        """
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown matching settings: {sorted(unknown)}")

        values = dict(values)
        if 'irrelevant_words' in values:
            values['irrelevant_words'] = tuple(values['irrelevant_words'])
        if 'ngram_range' in values:
            values['ngram_range'] = tuple(values['ngram_range'])
        if 'critical_categories' in values:
            values['critical_categories'] = tuple(
                c if isinstance(c, CriticalCategory) else CriticalCategory(*c)
                for c in values['critical_categories']
            )
        return cls(**values)


DEFAULT_CONFIG = MatchingConfig()


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class MeetingCandidate:
    """Snapshot of a synced video-conference meeting."""
    meeting_id: str
    topic: str
    host_id: str
    start_time: Optional[datetime] = None
    join_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'MeetingCandidate':
        """Build a candidate from a raw storage row."""
        return cls(
            meeting_id=str(record['meeting_id']),
            topic=str(record.get('topic') or ''),
            host_id=str(record.get('host_id') or ''),
            start_time=_parse_timestamp(record.get('start_time')),
            join_url=record.get('join_url') or None,
        )


@dataclass(frozen=True)
class UserCandidate:
    """Meeting host account."""
    id: str
    email: str = ''
    first_name: str = ''
    last_name: str = ''
    display_name: str = ''

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        return ' '.join(p for p in (self.first_name, self.last_name) if p)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'UserCandidate':
        """Build a user from a raw storage row."""
        return cls(
            id=str(record['id']),
            email=str(record.get('email') or ''),
            first_name=str(record.get('first_name') or ''),
            last_name=str(record.get('last_name') or ''),
            display_name=str(record.get('display_name') or ''),
        )


@dataclass(frozen=True)
class FoundInstructor:
    """Host of a matched meeting, as shown to users."""
    id: str
    email: str
    display_name: str

    @classmethod
    def from_user(cls, user: UserCandidate) -> 'FoundInstructor':
        return cls(id=user.id, email=user.email, display_name=user.full_name)


def _collapse(value: str) -> str:
    return ' '.join(str(value or '').split())


def _time_key(value: str) -> str:
    """Format a start time as HH:MM, accepting spreadsheet day fractions."""
    text = str(value or '').strip()
    if not text:
        return ''
    match = re.match(r'^(\d{1,2}):(\d{2})', text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"
    try:
        total_minutes = round(float(text) * 24 * 60)
    except ValueError:
        return text
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


@dataclass(frozen=True)
class Schedule:
    """A schedule entry owned by the surrounding application."""
    program: str
    date: str = ''
    shift: str = ''
    branch: str = ''
    start_time: str = ''
    end_time: str = ''
    code: str = ''
    instructor: str = ''
    minutes: str = ''
    units: str = ''

    @property
    def key(self) -> str:
        """Stable identity: date|start_time|instructor|program."""
        instructor = _collapse(self.instructor) or 'none'
        return (
            f"{self.date or ''}|{_time_key(self.start_time)}|"
            f"{instructor}|{_collapse(self.program)}"
        )


class MatchStatus(str, Enum):
    """Status of one schedule after matching."""
    ASSIGNED = "assigned"
    TO_UPDATE = "to_update"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    MANUAL = "manual"


class Decision(str, Enum):
    """Verdict of the decision policy."""
    ASSIGNED = "assigned"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class Penalty:
    """Verdict of a single scoring rule."""
    name: str
    points: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class ScoringContext:
    """Everything a rule may look at for one (schedule, candidate) pair."""
    raw_program: str
    normalized_program: str
    raw_topic: str
    normalized_topic: str
    candidate: MeetingCandidate
    all_candidates: Tuple[MeetingCandidate, ...] = ()


@dataclass(frozen=True)
class ScoringResult:
    """Score of one candidate with the penalties that produced it."""
    base_score: int
    candidate: MeetingCandidate
    final_score: int
    penalties: Tuple[Penalty, ...] = ()
    is_disqualified: bool = False


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one schedule."""
    schedule: Schedule
    status: MatchStatus
    reason: str
    detailed_reason: Optional[str] = None
    meeting_id: Optional[str] = None
    found_instructor: Optional[FoundInstructor] = None
    best_match: Optional[MeetingCandidate] = None
    candidates: Tuple[MeetingCandidate, ...] = ()
    ambiguous_candidates: Tuple[MeetingCandidate, ...] = ()
    matched_candidate: Optional[MeetingCandidate] = None
    score: Optional[int] = None
    manual_mode: bool = False
    original_state: Optional['MatchResult'] = None

    def with_override(
        self,
        meeting: MeetingCandidate,
        instructor: Optional[FoundInstructor] = None
    ) -> 'MatchResult':
        """
        Return a manually assigned copy of this result.

        The automatic verdict is kept in ``original_state``; overriding an
        already overridden result keeps the first automatic verdict.

        Args:
            meeting: Meeting chosen by the user
            instructor: Resolved host of that meeting, if known

        Returns:
            MatchResult: The overridden result
        """
        original = self.original_state or replace(self, original_state=None)
        return replace(
            self,
            status=MatchStatus.MANUAL,
            reason='Manually Assigned',
            meeting_id=meeting.meeting_id,
            matched_candidate=meeting,
            best_match=meeting,
            found_instructor=instructor,
            manual_mode=True,
            original_state=original,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for UI and tabular consumers."""
        def meeting(m: Optional[MeetingCandidate]) -> Optional[Dict[str, Any]]:
            if m is None:
                return None
            return {
                'meeting_id': m.meeting_id,
                'topic': m.topic,
                'host_id': m.host_id,
                'start_time': m.start_time.isoformat() if m.start_time else None,
                'join_url': m.join_url,
            }

        instructor = None
        if self.found_instructor is not None:
            instructor = {
                'id': self.found_instructor.id,
                'email': self.found_instructor.email,
                'display_name': self.found_instructor.display_name,
            }

        return {
            'schedule_key': self.schedule.key,
            'program': self.schedule.program,
            'instructor': self.schedule.instructor,
            'status': self.status.value,
            'reason': self.reason,
            'detailed_reason': self.detailed_reason,
            'meeting_id': self.meeting_id,
            'found_instructor': instructor,
            'best_match': meeting(self.best_match),
            'candidates': [meeting(c) for c in self.candidates],
            'ambiguous_candidates': [meeting(c) for c in self.ambiguous_candidates],
            'matched_candidate': meeting(self.matched_candidate),
            'score': self.score,
            'manual_mode': self.manual_mode,
            'original_state': (
                self.original_state.to_dict() if self.original_state else None
            ),
        }
