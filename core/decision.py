"""Decision policy turning candidate scores into a verdict."""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config.models import (
    Confidence,
    Decision,
    MatchingConfig,
    MeetingCandidate,
    ScoringResult
)
from core.scoring import ScoringEngine, build_context, default_engine


@dataclass(frozen=True)
class MatchDecision:
    """Verdict for one schedule over its candidates."""
    decision: Decision
    confidence: Confidence
    best_match: Optional[MeetingCandidate]
    all_results: Tuple[ScoringResult, ...]
    ambiguity_diff: int = 0

    @property
    def top(self) -> Optional[ScoringResult]:
        return self.all_results[0] if self.all_results else None

    def near_ties(self) -> List[ScoringResult]:
        """Qualified results within the ambiguity gap of the top score."""
        top = self.top
        if top is None or top.is_disqualified:
            return []
        return [
            r for r in self.all_results
            if not r.is_disqualified and top.final_score - r.final_score < self.ambiguity_diff
        ]


def confidence_for(
    score: int,
    config: MatchingConfig,
    base_score: Optional[int] = None
) -> Confidence:
    """Map a winning score to a confidence band, measured from ``base_score``."""
    drop = (config.base_score if base_score is None else base_score) - score
    if drop <= config.high_confidence_drop:
        return Confidence.HIGH
    if drop <= config.medium_confidence_drop:
        return Confidence.MEDIUM
    return Confidence.LOW


def evaluate_match(
    raw_program: str,
    candidates: Sequence[MeetingCandidate],
    engine: Optional[ScoringEngine] = None,
    config: Optional[MatchingConfig] = None
) -> MatchDecision:
    """
    Score every candidate and decide between assigned, ambiguous and not found.

    A disqualified top score means no candidate is acceptable. A runner-up
    within ``ambiguity_diff`` of the top makes the verdict ambiguous.

    Args:
        raw_program: Schedule program text
        candidates: Shortlisted meetings
        engine: Scoring engine (module default engine if None)
        config: Ambiguity and confidence thresholds (the engine's configuration
            if None); normalization and the base score always follow the engine

    Returns:
        MatchDecision: Verdict, confidence and all results sorted by score
    """
    engine = engine or default_engine
    config = config or engine.config
    candidates = tuple(candidates)

    if not candidates:
        return MatchDecision(
            Decision.NOT_FOUND, Confidence.NONE, None, (), config.ambiguity_diff
        )

    results = [
        engine.evaluate(build_context(raw_program, candidate, candidates, engine.config))
        for candidate in candidates
    ]
    # sorted() is stable, so equal scores keep candidate order
    results = tuple(sorted(results, key=lambda r: r.final_score, reverse=True))
    top = results[0]

    if top.is_disqualified:
        return MatchDecision(
            Decision.NOT_FOUND, Confidence.NONE, None, results, config.ambiguity_diff
        )

    confidence = confidence_for(top.final_score, config, engine.base_score)
    if len(results) > 1:
        runner_up = results[1]
        if top.final_score - runner_up.final_score < config.ambiguity_diff:
            return MatchDecision(
                Decision.AMBIGUOUS, confidence, top.candidate, results, config.ambiguity_diff
            )

    return MatchDecision(
        Decision.ASSIGNED, confidence, top.candidate, results, config.ambiguity_diff
    )
