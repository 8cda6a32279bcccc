"""String similarity between normalized programs and topics."""

import logging
from typing import List, Sequence
from functools import lru_cache

import Levenshtein


@lru_cache(maxsize=10000)
def word_similarity(word1: str, word2: str, compressed: bool = False) -> float:
    """Calculate cached similarity between two words."""
    if not word1 or not word2:
        return 0.0

    if word1 == word2:
        return 1.0

    # For very short words (levels, codes), require exact match
    if not compressed and (len(word1) <= 3 or len(word2) <= 3):
        return 0.0

    return 1 - (Levenshtein.distance(word1, word2) / max(len(word1), len(word2)))


class StringValidator:
    """Compares normalized strings word by word and as compressed blobs."""

    MEDIUM_SIMILARITY_THRESHOLD = 0.80

    def __init__(self, token_threshold: float = MEDIUM_SIMILARITY_THRESHOLD):
        self.token_threshold = token_threshold

    def calculate_similarity(self, s1: str, s2: str) -> float:
        """
        Calculate overall similarity between two normalized strings.

        Args:
            s1: First string
            s2: Second string

        Returns:
            float: Similarity score between 0 and 1
        """
        if not isinstance(s1, str) or not isinstance(s2, str):
            return 0.0

        s1_compressed = ''.join(s1.split())
        s2_compressed = ''.join(s2.split())

        if not s1_compressed and not s2_compressed:
            return 1.0

        # Quick exact match check, ignores spacing differences
        if s1_compressed == s2_compressed:
            return 1.0

        try:
            spaced_similarity = self._word_based_similarity(s1.split(), s2.split())
            compressed_similarity = word_similarity(s1_compressed, s2_compressed, True)
            return max(spaced_similarity, compressed_similarity)
        except Exception as e:
            logging.warning(f"Error in calculate_similarity: {str(e)}")
            return 0.0

    def _word_based_similarity(self, words1: List[str], words2: List[str]) -> float:
        """Greedy word alignment blended with match quality and length balance."""
        if not words1 or not words2:
            return 0.0

        remaining = list(range(len(words2)))
        aligned: List[float] = []

        for word in words1:
            scored = [(word_similarity(word, words2[j]), j) for j in remaining]
            if not scored:
                break
            similarity, j = max(scored, key=lambda pair: (pair[0], -pair[1]))
            if similarity >= self.token_threshold:
                aligned.append(similarity)
                remaining.remove(j)

        longest = max(len(words1), len(words2))
        coverage = len(aligned) / longest
        quality = sum(aligned) / len(aligned) if aligned else 0.0
        balance = min(len(words1), len(words2)) / longest

        return 0.6 * coverage + 0.3 * quality + 0.1 * balance

    def has_token(self, token: str, tokens: Sequence[str]) -> bool:
        """Whether ``tokens`` holds ``token`` or a close spelling of it."""
        return any(
            word_similarity(token, other) >= self.token_threshold
            for other in tokens
        )

    def unmatched_tokens(self, source: Sequence[str], target: Sequence[str]) -> List[str]:
        """Tokens of ``source`` with no counterpart in ``target``, in order."""
        return [token for token in source if not self.has_token(token, target)]
