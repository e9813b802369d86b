"""
Unit Tests for the Curriculum Path Codec

Tests topic key encoding, best-effort decoding and path resolution.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.curriculum_path import (
    CurriculumPath,
    DEFAULT_GRADE,
    DEFAULT_SUBJECT,
    DEFAULT_TOPIC,
    path_to_topic_key,
    resolve_curriculum_path,
    topic_key_to_path,
)


class TestPathToTopicKey:
    """Encoding structured paths."""

    def test_hyphens_become_separator(self):
        path = CurriculumPath("primary-6", "mathematics", "algebra", "simple-algebraic-expressions")
        assert path_to_topic_key(path) == "primary_6_mathematics_algebra_simple_algebraic_expressions"

    def test_deterministic(self):
        path = CurriculumPath("primary-5", "mathematics", "ratio", "equivalent-ratios")
        assert path_to_topic_key(path) == path_to_topic_key(
            CurriculumPath("primary-5", "mathematics", "ratio", "equivalent-ratios")
        )

    def test_different_subtopics_give_different_keys(self):
        a = CurriculumPath("primary-6", "mathematics", "fractions", "dividing-fractions")
        b = CurriculumPath("primary-6", "mathematics", "fractions", "adding-fractions")
        assert path_to_topic_key(a) != path_to_topic_key(b)


class TestTopicKeyToPath:
    """Decoding flat keys."""

    @pytest.mark.parametrize("path", [
        CurriculumPath("primary-6", "mathematics", "algebra", "simple-algebraic-expressions"),
        CurriculumPath("primary-6", "mathematics", "distance-time-speed", "average-speed"),
        CurriculumPath("primary-5", "mathematics", "area-circumference-circle", "circumference"),
        CurriculumPath("secondary-1", "mathematics", "fractions", "dividing-fractions"),
    ])
    def test_round_trip_for_own_keys(self, path):
        assert topic_key_to_path(path_to_topic_key(path)) == path

    def test_key_without_grade_uses_defaults(self):
        path = topic_key_to_path("fractions_dividing_fractions")

        assert path.grade == DEFAULT_GRADE
        assert path.subject == DEFAULT_SUBJECT
        assert path.topic == "fractions"
        assert path.subtopic == "dividing-fractions"

    def test_unknown_topic_takes_first_token(self):
        path = topic_key_to_path("geometry_angles_on_a_line")

        assert path.topic == "geometry"
        assert path.subtopic == "angles-on-a-line"

    def test_single_token_key(self):
        path = topic_key_to_path("percent")

        assert path.topic == DEFAULT_TOPIC
        assert path.subtopic == "percent"

    @pytest.mark.parametrize("key", ["", "   ", "___"])
    def test_empty_key_rejected(self, key):
        with pytest.raises(ValueError):
            topic_key_to_path(key)


class TestResolveCurriculumPath:
    """Choosing the canonical path for a request."""

    def test_explicit_path_wins(self):
        path = CurriculumPath("primary-6", "mathematics", "ratio", "sharing")
        assert resolve_curriculum_path(path, "primary_6_mathematics_algebra_other") is path

    def test_key_decoded_when_no_path(self):
        resolved = resolve_curriculum_path(None, "primary_6_mathematics_ratio_sharing")
        assert resolved == CurriculumPath("primary-6", "mathematics", "ratio", "sharing")

    def test_neither_given(self):
        with pytest.raises(ValueError):
            resolve_curriculum_path(None, None)
