"""
Schedule Matcher
================

Links locally authored schedule entries to synced video-conference meetings
when both sides only share human-written names.

Key Features:
- Accent, case and filler-word insensitive text normalization
- Pluggable penalty rules with explainable scores
- Assigned / ambiguous / not found decisions with confidence bands
- TF-IDF character n-gram candidate retrieval
- Background matching process with manual overrides
"""

from core.matcher import MatchingService
from core.orchestrator import MatchingOrchestrator
from core.scoring import ScoringEngine, score_candidate
from core.decision import evaluate_match

from config.models import (
    MatchingConfig,
    MeetingCandidate,
    UserCandidate,
    Schedule,
    MatchResult,
    MatchStatus
)
from config.rules import default_rules

__version__ = "1.0.0"
