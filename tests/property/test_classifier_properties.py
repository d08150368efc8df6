"""
Property-based tests for the local classifier and input normalization.

Property tests verify invariants:
- Classification never raises and stays in range
- Classification is deterministic
- Whitespace differences never change the outcome
- Only unknown input has zero confidence
"""

from __future__ import annotations

import sys
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from taskroute.classifier import DEFAULT_RULES, LocalClassifier
from taskroute.normalize import fingerprint, normalize_text
from taskroute.types import ProcessingRoute, TaskType

CLASSIFIER = LocalClassifier()

KEYWORDS = sorted({keyword for rule in DEFAULT_RULES for keyword in rule.keywords})

# Strategies
any_text = st.text(max_size=300)

utterance = st.lists(
    st.one_of(
        st.sampled_from(KEYWORDS),
        st.sampled_from(["file.txt", "Desktop", "200", "15%", "to", "the", "?", "finder", "daily"]),
        st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=8),
    ),
    min_size=1,
    max_size=12,
).map(" ".join)

padding = st.text(alphabet=" \t\n", min_size=1, max_size=4)


class TestClassificationProperties:
    """Invariants of LocalClassifier.classify."""

    @given(any_text)
    @settings(max_examples=200, deadline=None)
    def test_never_raises_and_in_range(self, text: str):
        """Any input yields a result with confidence in [0, 1]."""
        result = CLASSIFIER.classify(text)
        assert 0.0 <= result.confidence <= 1.0
        assert isinstance(result.task_type, TaskType)

    @given(utterance)
    @settings(max_examples=100, deadline=None)
    def test_deterministic(self, text: str):
        """The same input always classifies the same way."""
        assert CLASSIFIER.classify(text).to_dict() == CLASSIFIER.classify(text).to_dict()

    @given(st.lists(st.sampled_from(KEYWORDS + ["file.txt", "to", "Desktop"]), min_size=1, max_size=8), padding)
    @settings(max_examples=100, deadline=None)
    def test_whitespace_insensitive(self, words: list[str], gap: str):
        """Extra whitespace between and around words changes nothing."""
        compact = " ".join(words)
        spaced = gap + gap.join(words) + gap
        assert CLASSIFIER.classify(compact).to_dict() == CLASSIFIER.classify(spaced).to_dict()

    @given(utterance)
    @settings(max_examples=100, deadline=None)
    def test_zero_confidence_only_for_unknown(self, text: str):
        """A matched rule always contributes some confidence."""
        result = CLASSIFIER.classify(text)
        assert (result.task_type is TaskType.UNKNOWN) == (result.confidence == 0.0)

    @given(utterance)
    @settings(max_examples=100, deadline=None)
    def test_low_confidence_suggests_remote(self, text: str):
        """Below the hybrid threshold the suggestion is always remote."""
        result = CLASSIFIER.classify(text)
        if result.confidence < CLASSIFIER.hybrid_threshold:
            assert result.suggested_route is ProcessingRoute.REMOTE

    @given(utterance, st.sampled_from(["/tmp/archive", "/var/log/system.log", "~/Desktop/report.pdf"]))
    @settings(max_examples=100, deadline=None)
    def test_appending_path_never_lowers_confidence(self, text: str, path: str):
        """A well-formed path adds evidence, it never removes any."""
        before = CLASSIFIER.classify(text)
        after = CLASSIFIER.classify(f"{text} {path}")
        assert after.task_type is before.task_type
        assert after.confidence >= before.confidence

    @given(utterance)
    @settings(max_examples=50, deadline=None)
    def test_parameters_are_strings(self, text: str):
        """Extracted parameters are non-empty strings."""
        for name, value in CLASSIFIER.classify(text).parameters.items():
            assert isinstance(name, str)
            assert isinstance(value, str) and value


class TestNormalizationProperties:
    """Invariants of normalize_text and fingerprint."""

    @given(st.text(alphabet=st.characters(codec="ascii"), max_size=200))
    @settings(max_examples=100)
    def test_normalize_idempotent(self, text: str):
        """Normalizing twice equals normalizing once."""
        once = normalize_text(text)
        assert normalize_text(once) == once

    @given(st.text(alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ ", max_size=100), padding)
    @settings(max_examples=100)
    def test_fingerprint_ignores_case_and_padding(self, text: str, gap: str):
        """Case and surrounding whitespace never change the fingerprint."""
        assert fingerprint(text) == fingerprint(gap + text.upper() + gap)

    @given(any_text)
    @settings(max_examples=100)
    def test_fingerprint_shape(self, text: str):
        """Fingerprints are 64 hex characters."""
        key = fingerprint(text)
        assert len(key) == 64
        assert all(c in "0123456789abcdef" for c in key)
