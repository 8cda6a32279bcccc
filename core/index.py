"""Fuzzy TF-IDF index over meeting topics."""

from typing import Iterable, List, Optional, Tuple
import logging
import time

import numpy as np
import xxhash
from scipy.sparse import csr_matrix
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import linear_kernel

from config.models import DEFAULT_CONFIG, MatchingConfig, MeetingCandidate
from core.normalizer import get_normalizer

logger = logging.getLogger(__name__)


def snapshot_fingerprint(meetings: Iterable[MeetingCandidate]) -> str:
    """Order-independent hash of a meeting snapshot."""
    digest = xxhash.xxh64()
    for key in sorted(f"{m.meeting_id}\x1f{m.topic}\x1f{m.host_id}" for m in meetings):
        digest.update(key.encode('utf-8'))
        digest.update(b'\x1e')
    return digest.hexdigest()


class CandidateIndex:
    """
    Character n-gram TF-IDF index, built once per meeting snapshot.

    Rows are L2-normalized, so the dot product with a query vector is the
    cosine similarity.
    """

    def __init__(
        self,
        meetings: Iterable[MeetingCandidate],
        config: MatchingConfig = DEFAULT_CONFIG
    ):
        """
        Build the index.

        Args:
            meetings: Meeting snapshot; duplicates by meeting_id are dropped
            config: Matching configuration (n-grams, floor, shortlist size)
        """
        self.config = config
        self.normalizer = get_normalizer(config.irrelevant_words)
        self.meetings: List[MeetingCandidate] = self._deduplicate(meetings)
        self.fingerprint = snapshot_fingerprint(self.meetings)
        self.vectorizer: Optional[TfidfVectorizer] = None
        self.feature_matrix: Optional[csr_matrix] = None
        self._build()

    @staticmethod
    def _deduplicate(meetings: Iterable[MeetingCandidate]) -> List[MeetingCandidate]:
        seen = set()
        unique = []
        duplicates = 0
        for meeting in meetings:
            if meeting.meeting_id in seen:
                duplicates += 1
                continue
            seen.add(meeting.meeting_id)
            unique.append(meeting)
        if duplicates:
            logger.info(f"Dropped {duplicates} duplicate meetings from snapshot")
        return unique

    def _build(self) -> None:
        start_time = time.time()
        topics = [self.normalizer.normalize_string(m.topic) for m in self.meetings]
        if not any(topics):
            logger.info("Candidate index is empty")
            return

        vectorizer = TfidfVectorizer(
            analyzer='char_wb',
            ngram_range=self.config.ngram_range,
            lowercase=False,
            use_idf=True,
            smooth_idf=True,
            sublinear_tf=True
        )
        try:
            self.feature_matrix = vectorizer.fit_transform(topics)
        except ValueError as e:
            # Raised by scikit-learn on an empty vocabulary
            logger.warning(f"Could not build candidate index: {e}")
            return
        self.vectorizer = vectorizer

        logger.info(
            f"Indexed {len(self.meetings)} meetings "
            f"({self.feature_matrix.shape[1]} n-grams) in {time.time() - start_time:.2f} seconds"
        )

    def __len__(self) -> int:
        return len(self.meetings)

    def search(
        self,
        text: str,
        limit: Optional[int] = None
    ) -> List[Tuple[MeetingCandidate, float]]:
        """
        Find the meetings whose topic resembles ``text``.

        Args:
            text: Raw or normalized query text
            limit: Maximum results (configured shortlist size if None)

        Returns:
            List[Tuple[MeetingCandidate, float]]: Candidates with cosine
            similarity at or above the retrieval floor, best first
        """
        if self.vectorizer is None:
            return []

        query = self.normalizer.normalize_string(text)
        if not query:
            return []

        limit = limit or self.config.shortlist_size
        query_vector = self.vectorizer.transform([query])
        similarities = linear_kernel(query_vector, self.feature_matrix).ravel()

        order = np.argsort(-similarities, kind='stable')
        shortlist = []
        for idx in order[:limit]:
            similarity = float(similarities[idx])
            if similarity < self.config.retrieval_floor:
                break
            shortlist.append((self.meetings[idx], similarity))
        return shortlist
