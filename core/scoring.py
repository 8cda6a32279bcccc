"""Rule-based scoring of meeting candidates against a schedule program."""

from typing import Iterable, List, Optional, Sequence, Tuple
import logging

from config.models import (
    DEFAULT_CONFIG,
    MatchingConfig,
    MeetingCandidate,
    Penalty,
    ScoringContext,
    ScoringResult
)
from config.rules import PenaltyRule, default_rules
from core.normalizer import get_normalizer

logger = logging.getLogger(__name__)


def _rule_name(rule: PenaltyRule) -> str:
    return getattr(rule, 'name', None) or getattr(rule, '__name__', None) or repr(rule)


class ScoringEngine:
    """
    Applies an ordered list of penalty rules to a fixed base score.

    Rules are independent callables; a rule that raises is logged and counts
    as "no penalty" so one faulty rule never aborts a batch.
    """

    def __init__(
        self,
        rules: Optional[Iterable[PenaltyRule]] = None,
        config: MatchingConfig = DEFAULT_CONFIG
    ):
        """
        Initialize the engine.

        Args:
            rules: Penalty rules in evaluation order (default rule set if None)
            config: Matching configuration supplying the base score
        """
        self.config = config
        self._rules: List[PenaltyRule] = (
            list(rules) if rules is not None else default_rules(config)
        )

    @property
    def base_score(self) -> int:
        return self.config.base_score

    @property
    def rules(self) -> Tuple[PenaltyRule, ...]:
        return tuple(self._rules)

    def add_rule(self, rule: PenaltyRule) -> None:
        """Append a rule; call before a batch starts."""
        self._rules.append(rule)

    def evaluate(self, context: ScoringContext) -> ScoringResult:
        """
        Score one candidate.

        Args:
            context: Program, topic and sibling candidates for the pair

        Returns:
            ScoringResult: Clamped score with the penalties applied, in rule order
        """
        score = self.base_score
        penalties: List[Penalty] = []

        for rule in self._rules:
            try:
                penalty = rule(context)
            except Exception as e:
                logger.warning(
                    f"Scoring rule {_rule_name(rule)} failed for meeting "
                    f"{context.candidate.meeting_id}: {e}"
                )
                continue

            if penalty is None:
                continue
            penalties.append(penalty)
            score += penalty.points

        final_score = max(0, score)
        return ScoringResult(
            base_score=self.base_score,
            candidate=context.candidate,
            final_score=final_score,
            penalties=tuple(penalties),
            is_disqualified=final_score == 0
        )


default_engine = ScoringEngine()


def build_context(
    program_text: str,
    candidate: MeetingCandidate,
    all_candidates: Sequence[MeetingCandidate],
    config: MatchingConfig = DEFAULT_CONFIG
) -> ScoringContext:
    """Normalize both texts and bundle them for the rules."""
    normalizer = get_normalizer(config.irrelevant_words)
    return ScoringContext(
        raw_program=program_text or '',
        normalized_program=normalizer.normalize_string(program_text),
        raw_topic=candidate.topic or '',
        normalized_topic=normalizer.normalize_string(candidate.topic),
        candidate=candidate,
        all_candidates=tuple(all_candidates)
    )


def score_candidate(
    program_text: str,
    candidate: MeetingCandidate,
    all_candidates: Sequence[MeetingCandidate],
    context: Optional[ScoringContext] = None,
    engine: Optional[ScoringEngine] = None
) -> ScoringResult:
    """
    Score a single (program, candidate) pair.

    Args:
        program_text: Raw schedule program
        candidate: Meeting to score
        all_candidates: Every candidate considered for the same schedule
        context: Prebuilt context, used as is when given
        engine: Engine to use (module default engine if None)

    Returns:
        ScoringResult: The candidate's score
    """
    engine = engine or default_engine
    if context is None:
        context = build_context(program_text, candidate, all_candidates, engine.config)
    return engine.evaluate(context)
