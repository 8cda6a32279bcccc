"""Tests for text normalization."""

import re

import pytest

from core.normalizer import (
    TextNormalizer,
    canonical,
    normalize_string,
    remove_irrelevant,
    tokenize
)

SAMPLES = [
    'García López (PER)(ONLINE), María Fernanda',
    'BVP - JUAN ALBERTO RIVERA - L9 (ONLINE)',
    'F2F_PER',
    '  HELLO   WORLD  ',
    'TRIO TECHCORP L4 (ONLINE)',
    'Ñandú — Niño ((PER))',
    'İstanbul ZOOM_session',
    'a__b--c',
]


class TestRemoveIrrelevant:
    """Deny-listed filler removal."""

    def test_removes_listed_words(self):
        result = remove_irrelevant('GARCIA (PER)(ONLINE), Juan')
        assert 'ONLINE' not in result
        assert 'PER' not in result
        assert 'GARCIA' in result
        assert 'Juan' in result

    def test_is_case_insensitive(self):
        assert remove_irrelevant('class online Per') == 'class'

    def test_matches_at_word_boundaries_only(self):
        assert remove_irrelevant('PEREZ ONLINER') == 'PEREZ ONLINER'

    def test_keeps_unlisted_tokens(self):
        assert 'BVP' in remove_irrelevant('BVP - JUAN GARCIA')

    def test_leaves_no_double_spaces(self):
        result = remove_irrelevant('Something ONLINE Here')
        assert result == 'Something Here'
        assert not re.search(r'\s{2,}', result)

    def test_drops_brackets_left_empty(self):
        assert remove_irrelevant('APP (ONLINE) [ZOOM]') == 'APP'

    @pytest.mark.parametrize('value', ['', None, float('nan')])
    def test_empty_input(self, value):
        assert remove_irrelevant(value) == ''


class TestNormalizeString:
    """Full normalization pipeline."""

    def test_lowercases(self):
        assert normalize_string('HELLO WORLD') == 'hello world'

    def test_strips_accents(self):
        assert normalize_string('García López') == 'garcia lopez'

    def test_underscores_and_dashes_become_spaces(self):
        assert normalize_string('a__b--c') == 'a b c'
        assert normalize_string('F2F_PER') == ''
        assert normalize_string('BVP - JUAN') == 'bvp juan'

    def test_collapses_whitespace(self):
        assert normalize_string('  HELLO   WORLD  ') == 'hello world'

    def test_real_world_program(self):
        result = normalize_string('García López (PER)(ONLINE), María Fernanda')
        assert result == 'garcia lopez , maria fernanda'

    def test_topic_with_code_prefix(self):
        assert normalize_string('BVP - JUAN ALBERTO RIVERA - L9 (ONLINE)') == 'bvp juan alberto rivera l9'

    @pytest.mark.parametrize('value', ['', None, float('nan')])
    def test_empty_input(self, value):
        assert normalize_string(value) == ''

    @pytest.mark.parametrize('text', SAMPLES)
    def test_output_properties(self, text):
        result = normalize_string(text)
        assert result == result.lower()
        assert '_' not in result
        assert '-' not in result
        assert '  ' not in result
        assert normalize_string(result) == result


class TestCanonical:
    """Compact comparison form."""

    def test_removes_non_alphanumeric(self):
        assert canonical('Hello World!') == 'helloworld'

    def test_complex_input(self):
        result = canonical('García López (PER)')
        assert re.fullmatch(r'[a-z0-9]+', result)
        assert result == 'garcialopez'

    def test_equivalent_inputs(self):
        assert canonical('García López') == canonical('garcia lopez')
        assert canonical('GARCIA-LOPEZ.') == canonical('garcia lopez')

    def test_empty_input(self):
        assert canonical('') == ''

    def test_keeps_non_latin_letters(self):
        assert canonical('Москва (ONLINE)') == 'москва'
        assert canonical('Straße 5!') == 'straße5'

    def test_tokenize_non_latin_letters(self):
        assert tokenize('Straße - Москва L2') == ['straße', 'москва', 'l2']


class TestTextNormalizer:
    """Custom irrelevant-word lists."""

    def test_custom_list(self):
        normalizer = TextNormalizer(['BVP'])
        assert normalizer.normalize_string('BVP - JUAN ONLINE') == 'juan online'

    def test_empty_list_keeps_everything(self):
        normalizer = TextNormalizer([])
        assert normalizer.remove_irrelevant('APP ONLINE') == 'APP ONLINE'

    def test_tokenize(self):
        assert tokenize('TRIO, TechCorp (L4)') == ['trio', 'techcorp', 'l4']
