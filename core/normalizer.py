"""Text normalization for comparing schedule programs with meeting topics."""

from typing import Any, Iterable, List
import logging
import unicodedata
from functools import lru_cache

import pandas as pd
import regex as re

from config.models import DEFAULT_CONFIG

logger = logging.getLogger(__name__)

_DASHES = re.compile(r'[_\-‐-―]')
_COMBINING_MARKS = re.compile(r'\p{Mn}+')
_EMPTY_BRACKETS = re.compile(r'\(\s*\)|\[\s*\]')
_WHITESPACE = re.compile(r'\s+')
_NON_ALNUM = re.compile(r'[^\p{L}\p{N}]')
_TOKEN = re.compile(r'[\p{L}\p{N}]+')


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class TextNormalizer:
    """Canonicalizes free text using a closed list of irrelevant words."""

    def __init__(self, irrelevant_words: Iterable[str] = DEFAULT_CONFIG.irrelevant_words):
        self.irrelevant_words = tuple(irrelevant_words)
        self._irrelevant_pattern = self._build_pattern(self.irrelevant_words)

    @staticmethod
    def _build_pattern(words: Iterable[str]):
        """Longest words first so overlapping entries match whole."""
        ordered = sorted({w.strip() for w in words if w and w.strip()}, key=len, reverse=True)
        if not ordered:
            return None
        alternatives = '|'.join(re.escape(w) for w in ordered)
        return re.compile(rf'\b(?:{alternatives})\b', re.IGNORECASE)

    def remove_irrelevant(self, text: Any) -> str:
        """Drop deny-listed filler tokens and tidy the leftover spacing."""
        if _is_missing(text):
            return ''
        text = str(text)
        if not text:
            return ''

        if self._irrelevant_pattern is not None:
            text = self._irrelevant_pattern.sub(' ', text)
        # Nested brackets empty out from the inside
        removed = 1
        while removed:
            text, removed = _EMPTY_BRACKETS.subn(' ', text)
        return _WHITESPACE.sub(' ', text).strip()

    def normalize_string(self, text: Any) -> str:
        """Lower-case, accent-free, filler-free text with single spaces."""
        if _is_missing(text):
            return ''
        text = str(text)
        if not text:
            return ''

        try:
            text = _DASHES.sub(' ', text).lower()
            text = _COMBINING_MARKS.sub('', unicodedata.normalize('NFD', text))
            text = unicodedata.normalize('NFC', text)
            text = self.remove_irrelevant(text)
            return _WHITESPACE.sub(' ', text).strip()
        except Exception as e:
            logger.warning(f"Error normalizing text {text!r}: {e}")
            return ''

    def canonical(self, text: Any) -> str:
        """Normalized text with everything but letters and digits removed."""
        return _NON_ALNUM.sub('', self.normalize_string(text))

    def tokenize(self, text: Any) -> List[str]:
        """Alphanumeric tokens of the normalized text."""
        return _TOKEN.findall(self.normalize_string(text))


default_normalizer = TextNormalizer()


@lru_cache(maxsize=16)
def get_normalizer(irrelevant_words: tuple) -> TextNormalizer:
    """Shared normalizer for a given irrelevant-word list."""
    if irrelevant_words == default_normalizer.irrelevant_words:
        return default_normalizer
    return TextNormalizer(irrelevant_words)


def remove_irrelevant(text: Any) -> str:
    return default_normalizer.remove_irrelevant(text)


def normalize_string(text: Any) -> str:
    return default_normalizer.normalize_string(text)


def canonical(text: Any) -> str:
    return default_normalizer.canonical(text)


def tokenize(text: Any) -> List[str]:
    return default_normalizer.tokenize(text)
