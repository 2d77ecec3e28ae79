"""
Tests for the Insight Scoring Engine.

Score model, mood z-score degenerate cases, confidence tier boundaries and
the empty-cohort behaviour.
"""
import math
from statistics import pstdev

import pytest

from fixtures.insight_fixtures import make_session
from services.insight_scoring import (
    MOOD_WEIGHT,
    PERF_WEIGHT,
    confidence_tier,
    diff_in_means,
    mood_z_scores,
    nan_mean,
    overall_mean,
    round_or_none,
    score_sessions,
)


class TestStats:

    def test_nan_mean_ignores_missing(self):
        assert nan_mean([1.0, None, 3.0, float("nan")]) == 2.0

    def test_nan_mean_empty_is_nan(self):
        assert math.isnan(nan_mean([]))
        assert math.isnan(nan_mean([None]))

    def test_diff_in_means(self):
        assert diff_in_means([1.0, 3.0], [0.5, 0.5]) == 1.5
        assert math.isnan(diff_in_means([], [1.0]))

    def test_round_or_none(self):
        assert round_or_none(0.12345) == 0.12
        assert round_or_none(float("nan")) is None
        assert round_or_none(None) is None


class TestConfidenceTier:

    @pytest.mark.parametrize("n,effect,expected", [
        (25, 0.30, "high"),
        (24, 0.30, "medium"),
        (25, 0.29, "medium"),
        (10, 0.15, "medium"),
        (9, 0.15, "low"),
        (10, 0.14, "low"),
        (100, 0.10, "low"),
        (3, 2.0, "low"),
        (0, 0.0, "low"),
    ])
    def test_boundaries(self, n, effect, expected):
        assert confidence_tier(n, effect) == expected

    def test_negative_effect_uses_magnitude(self):
        assert confidence_tier(30, -0.5) == "high"

    def test_nan_effect_is_low(self):
        assert confidence_tier(30, float("nan")) == "low"


class TestMoodZ:

    def test_fewer_than_two_observations_gives_zero(self):
        sessions = [make_session("a", mood_delta=2.0), make_session("b")]
        assert mood_z_scores(sessions) == [0.0, 0.0]

    def test_zero_spread_gives_zero(self):
        sessions = [make_session("a", mood_delta=1.0), make_session("b", mood_delta=1.0)]
        assert mood_z_scores(sessions) == [0.0, 0.0]

    def test_population_stddev(self):
        deltas = [1.0, 2.0, 3.0, 6.0]
        sessions = [make_session(str(i), mood_delta=d) for i, d in enumerate(deltas)]
        mu = sum(deltas) / len(deltas)
        sigma = pstdev(deltas)
        assert mood_z_scores(sessions) == pytest.approx([(d - mu) / sigma for d in deltas])

    def test_missing_mood_in_mixed_cohort_is_zero(self):
        sessions = [
            make_session("a", mood_delta=1.0),
            make_session("b"),
            make_session("c", mood_delta=3.0),
        ]
        assert mood_z_scores(sessions) == pytest.approx([-1.0, 0.0, 1.0])


class TestScoreSessions:

    def test_weighted_score(self):
        sessions = [
            make_session("a", tonnage_z=1.0, mood_delta=1.0),
            make_session("b", tonnage_z=-0.5, mood_delta=3.0),
        ]
        scored = score_sessions(sessions)
        assert [s.session.session_id for s in scored] == ["a", "b"]
        assert scored[0].perf_z == 1.0
        assert scored[0].mood_z == pytest.approx(-1.0)
        assert scored[0].score == pytest.approx(PERF_WEIGHT * 1.0 + MOOD_WEIGHT * -1.0)
        assert scored[1].score == pytest.approx(PERF_WEIGHT * -0.5 + MOOD_WEIGHT * 1.0)

    def test_missing_perf_counts_as_zero(self):
        scored = score_sessions([make_session("a", tonnage_z=None), make_session("b", tonnage_z=float("nan"))])
        assert [s.perf_z for s in scored] == [0.0, 0.0]
        assert [s.score for s in scored] == [0.0, 0.0]

    def test_deterministic(self):
        sessions = [make_session(str(i), tonnage_z=i / 3, mood_delta=(i % 4) - 1.5) for i in range(12)]
        first = [s.score for s in score_sessions(sessions)]
        second = [s.score for s in score_sessions(list(sessions))]
        assert first == second

    def test_empty_cohort(self):
        assert score_sessions([]) == []
        assert overall_mean([]) == 0.0

    def test_overall_mean(self):
        scored = score_sessions([make_session("a", tonnage_z=1.0), make_session("b", tonnage_z=0.0)])
        assert overall_mean(scored) == pytest.approx(0.3)
