"""Tabular views and summaries of matching results."""

from typing import Dict, Iterable, List
import logging

import numpy as np
import pandas as pd

from config.models import MatchResult, MatchStatus

RESULT_COLUMNS = [
    'schedule_key',
    'date',
    'start_time',
    'instructor',
    'program',
    'status',
    'reason',
    'detailed_reason',
    'meeting_id',
    'topic',
    'host',
    'score',
    'candidate_count',
    'ambiguous_count',
    'manual_mode',
]


def results_frame(results: Iterable[MatchResult]) -> pd.DataFrame:
    """
    Flatten results into one row per schedule, in result order.

    Args:
        results: Match results, typically a whole batch

    Returns:
        pd.DataFrame: Assignment table with RESULT_COLUMNS
    """
    rows = []
    for result in results:
        matched = result.matched_candidate or result.best_match
        rows.append({
            'schedule_key': result.schedule.key,
            'date': result.schedule.date,
            'start_time': result.schedule.start_time,
            'instructor': result.schedule.instructor,
            'program': result.schedule.program,
            'status': result.status.value,
            'reason': result.reason,
            'detailed_reason': result.detailed_reason,
            'meeting_id': result.meeting_id,
            'topic': matched.topic if matched else None,
            'host': result.found_instructor.display_name if result.found_instructor else None,
            'score': result.score if result.score is not None else np.nan,
            'candidate_count': len(result.candidates),
            'ambiguous_count': len(result.ambiguous_candidates),
            'manual_mode': result.manual_mode,
        })

    frame = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    frame['score'] = frame['score'].astype(float)
    return frame


def summarize(results: Iterable[MatchResult]) -> Dict[str, float]:
    """
    Count results per status and describe the scores of matched schedules.

    Args:
        results: Match results

    Returns:
        Dict[str, float]: One count per status plus ``total``,
        ``match_rate`` and ``mean_score``
    """
    frame = results_frame(results)
    counts = frame['status'].value_counts()

    summary: Dict[str, float] = {
        status.value: int(counts.get(status.value, 0)) for status in MatchStatus
    }
    total = len(frame)
    matched = summary['assigned'] + summary['to_update'] + summary['manual']
    scores = frame.loc[frame['meeting_id'].notna(), 'score'].to_numpy(dtype=float)
    scores = scores[~np.isnan(scores)]

    summary['total'] = total
    summary['match_rate'] = matched / total if total else 0.0
    summary['mean_score'] = float(np.mean(scores)) if scores.size else 0.0

    logging.info(
        f"Match summary: {matched}/{total} matched, "
        f"{summary['ambiguous']} ambiguous, {summary['not_found']} not found"
    )
    return summary


def status_breakdown(results: Iterable[MatchResult], by: str = 'date') -> pd.DataFrame:
    """Status counts grouped by a schedule column (date, instructor, ...)."""
    frame = results_frame(results)
    if by not in frame.columns:
        raise ValueError(f"Unknown column: {by}")
    table = pd.crosstab(frame[by], frame['status'])
    columns: List[str] = [s.value for s in MatchStatus]
    return table.reindex(columns=columns, fill_value=0)
