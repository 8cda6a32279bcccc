"""Penalty rules for scoring schedule/meeting candidate pairs."""

from typing import Callable, List, Optional
import regex as re

from config.models import DEFAULT_CONFIG, MatchingConfig, Penalty, ScoringContext
from core.normalizer import get_normalizer
from core.validator import StringValidator

# A rule looks at one pair and returns a penalty, or None when it does not apply.
PenaltyRule = Callable[[ScoringContext], Optional[Penalty]]

_TOKEN = re.compile(r'[\p{L}\p{N}]+')


def _tokens(normalized: str) -> List[str]:
    return _TOKEN.findall(normalized or '')


def _compact(normalized: str) -> str:
    return ''.join(_tokens(normalized))


class CriticalTokenMismatchRule:
    """Vetoes pairs whose mutually exclusive markers contradict each other."""

    name = 'CRITICAL_TOKEN_MISMATCH'

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.categories = config.critical_categories
        self.points = config.critical_penalty

    def __call__(self, context: ScoringContext) -> Optional[Penalty]:
        program_tokens = _tokens(context.normalized_program)
        topic_tokens = _tokens(context.normalized_topic)

        for category in self.categories:
            program_markers = category.markers(program_tokens)
            topic_markers = category.markers(topic_tokens)
            if program_markers and topic_markers and program_markers != topic_markers:
                return Penalty(
                    self.name,
                    self.points,
                    f"{category.name} differs: "
                    f"{'/'.join(sorted(program_markers))} vs {'/'.join(sorted(topic_markers))}"
                )
        return None


class LexicalDistanceRule:
    """Penalizes in proportion to the textual distance between both texts."""

    name = 'LEXICAL_DISTANCE'

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.weight = config.lexical_weight
        self.validator = StringValidator(config.token_similarity)

    def __call__(self, context: ScoringContext) -> Optional[Penalty]:
        similarity = self.validator.calculate_similarity(
            context.normalized_program,
            context.normalized_topic
        )
        points = -round((1 - similarity) * self.weight)
        if points == 0:
            return None
        return Penalty(self.name, points, f"similarity {similarity:.2f}")


class MissingTokensRule:
    """Penalizes program words that the topic does not mention."""

    name = 'MISSING_TOKENS'

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.points_per_token = config.missing_token_penalty
        self.validator = StringValidator(config.token_similarity)

    def __call__(self, context: ScoringContext) -> Optional[Penalty]:
        missing = self.validator.unmatched_tokens(
            _tokens(context.normalized_program),
            _tokens(context.normalized_topic)
        )
        if not missing:
            return None
        return Penalty(
            self.name,
            self.points_per_token * len(missing),
            f"missing in topic: {', '.join(missing)}"
        )


class ExtraTokensRule:
    """Penalizes, lightly, topic words the program does not mention."""

    name = 'EXTRA_TOKENS'

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.points_per_token = config.extra_token_penalty
        self.validator = StringValidator(config.token_similarity)

    def __call__(self, context: ScoringContext) -> Optional[Penalty]:
        extra = self.validator.unmatched_tokens(
            _tokens(context.normalized_topic),
            _tokens(context.normalized_program)
        )
        if not extra:
            return None
        return Penalty(
            self.name,
            self.points_per_token * len(extra),
            f"not in program: {', '.join(extra)}"
        )


class CompetingExactMatchRule:
    """Penalizes a fuzzy candidate when a sibling carries the exact program."""

    name = 'COMPETING_EXACT_MATCH'

    def __init__(self, config: MatchingConfig = DEFAULT_CONFIG):
        self.points = config.competing_match_penalty
        self.normalizer = get_normalizer(config.irrelevant_words)

    def __call__(self, context: ScoringContext) -> Optional[Penalty]:
        program = _compact(context.normalized_program)
        if not program or _compact(context.normalized_topic) == program:
            return None

        for sibling in context.all_candidates:
            if sibling.meeting_id == context.candidate.meeting_id:
                continue
            if self.normalizer.canonical(sibling.topic) == program:
                return Penalty(
                    self.name,
                    self.points,
                    f"meeting {sibling.meeting_id} matches the program exactly"
                )
        return None


def default_rules(config: MatchingConfig = DEFAULT_CONFIG) -> List[PenaltyRule]:
    """
    Build the standard rule list, in evaluation order.

    Args:
        config: Matching configuration supplying weights and markers

    Returns:
        List[PenaltyRule]: Fresh rule instances
    """
    return [
        CriticalTokenMismatchRule(config),
        LexicalDistanceRule(config),
        MissingTokensRule(config),
        ExtraTokensRule(config),
        CompetingExactMatchRule(config),
    ]
