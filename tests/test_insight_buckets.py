"""
Tests for the Insight Aggregator / Bucketer.
"""
from datetime import datetime, timezone

import pytest

from fixtures.insight_fixtures import make_session
from services.insight_buckets import (
    BPM_BANDS,
    HOUR_BUCKETS,
    aggregate_impacts,
    best_time_slots,
    bpm_band,
    bpm_band_of,
    bucket_for_hour,
    bucket_hour,
    energy_band,
    energy_band_of,
    genre_of,
    likelihood_label,
    split_of,
)
from services.insight_scoring import ScoredSession


def scored(session_id, score, **fields):
    return ScoredSession(session=make_session(session_id, **fields), perf_z=0.0, mood_z=0.0, score=score)


def at_hour(hour):
    return datetime(2024, 6, 14, hour, 30, tzinfo=timezone.utc)


class TestHourBuckets:

    def test_every_hour_maps_to_exactly_one_bucket(self):
        buckets = [bucket_for_hour(h) for h in range(24)]
        assert all(b in HOUR_BUCKETS for b in buckets)
        assert set(buckets) == set(HOUR_BUCKETS)

    @pytest.mark.parametrize("hour,expected", [
        (6, "06–09"), (9, "06–09"),
        (10, "10–12"), (12, "10–12"),
        (13, "13–16"), (16, "13–16"),
        (17, "17–20"), (20, "17–20"),
        (21, "21–01"), (23, "21–01"), (0, "21–01"), (1, "21–01"), (5, "21–01"),
    ])
    def test_boundaries(self, hour, expected):
        assert bucket_for_hour(hour) == expected

    def test_bucket_hour_uses_timestamp(self):
        assert bucket_hour(at_hour(7)) == "06–09"
        assert bucket_hour(None) is None

    def test_bucket_hour_in_configured_zone(self, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "INSIGHTS_TIMEZONE", "America/New_York")
        # 22:30 UTC in June is 18:30 in New York
        assert bucket_hour(at_hour(22)) == "17–20"


class TestBands:

    @pytest.mark.parametrize("value,expected", [
        (None, None), (0.0, "low"), (0.39, "low"), (0.4, "mid"), (0.69, "mid"), (0.7, "high"), (1.0, "high"),
    ])
    def test_energy_band(self, value, expected):
        assert energy_band(value) == expected

    @pytest.mark.parametrize("bpm,expected", [
        (None, None), (90, "<110"), (109.9, "<110"), (110, "110-127"), (127.5, "110-127"),
        (128, "128-135"), (135, "128-135"), (135.1, ">135"), (180, ">135"),
    ])
    def test_bpm_band(self, bpm, expected):
        assert bpm_band(bpm) == expected
        assert expected is None or expected in BPM_BANDS

    @pytest.mark.parametrize("n,expected", [(0, "Anecdotal"), (4, "Anecdotal"), (5, "Tentative"), (9, "Tentative"), (10, "Likely")])
    def test_likelihood_label(self, n, expected):
        assert likelihood_label(n) == expected


class TestAggregateImpacts:

    def test_impact_is_mean_minus_overall(self):
        items = [
            scored("a", 1.0, pre_top_genre="Rock"),
            scored("b", 0.6, pre_top_genre="Rock"),
            scored("c", -0.4, pre_top_genre="Pop"),
            scored("d", 0.0),
        ]
        # overall mean = 0.3 (unlabeled sessions count toward the baseline)
        impacts = aggregate_impacts(items, genre_of)
        assert [(i.label, i.impact, i.n) for i in impacts] == [("Pop", -0.7, 1), ("Rock", 0.5, 2)]

    def test_sign_follows_direction(self):
        items = [scored("a", 2.0, split_label="Push"), scored("b", -2.0, split_label="Legs")]
        impacts = {i.label: i.impact for i in aggregate_impacts(items, split_of)}
        assert impacts["Push"] > 0
        assert impacts["Legs"] < 0

    def test_ties_broken_by_n_then_first_seen(self):
        items = [
            scored("a", 1.0, pre_top_genre="Solo"),
            scored("b", -1.0, pre_top_genre="Pair"),
            scored("c", -1.0, pre_top_genre="Pair"),
            scored("d", 1.0, pre_top_genre="Duo"),
            scored("e", 1.0, pre_top_genre="Duo"),
            scored("f", -1.0, pre_top_genre="Last"),
        ]
        # overall 0: Solo +1 (n1), Pair -1 (n2), Duo +1 (n2), Last -1 (n1)
        labels = [i.label for i in aggregate_impacts(items, genre_of)]
        assert labels == ["Pair", "Duo", "Solo", "Last"]

    def test_explicit_baseline(self):
        items = [scored("a", 1.0, pre_top_genre="Rock")]
        assert aggregate_impacts(items, genre_of, baseline=0.25)[0].impact == 0.75

    def test_empty_input(self):
        assert aggregate_impacts([], genre_of) == []

    def test_labels_differing_in_case_form_one_group(self):
        items = [
            scored("a", 1.0, pre_top_genre="Rock"),
            scored("b", 0.0, pre_top_genre="rock"),
            scored("c", -1.0, pre_top_genre="Jazz"),
        ]
        impacts = aggregate_impacts(items, genre_of)
        assert [(i.label, i.n) for i in impacts] == [("Jazz", 1), ("Rock", 2)]
        assert impacts[1].impact == 0.5

    def test_energy_bands_ranked(self):
        items = [
            scored("a", 1.2, pre_energy=0.9),
            scored("b", 0.8, pre_energy=0.75),
            scored("c", -0.4, pre_energy=0.5),
            scored("d", -1.6, pre_energy=0.2),
            scored("e", 0.0),
        ]
        # overall 0: high +1.0 (n2), mid -0.4, low -1.6; "e" has no band
        impacts = aggregate_impacts(items, energy_band_of)
        assert [(i.label, i.impact, i.n) for i in impacts] == [
            ("low", -1.6, 1), ("high", 1.0, 2), ("mid", -0.4, 1),
        ]

    def test_bpm_bands_ranked(self):
        items = [
            scored("a", 1.0, pre_bpm=140),
            scored("b", 0.5, pre_bpm=150),
            scored("c", -0.5, pre_bpm=130),
            scored("d", -1.0, pre_bpm=95),
            scored("e", 0.0, pre_bpm=None),
        ]
        impacts = aggregate_impacts(items, bpm_band_of)
        assert [i.label for i in impacts] == ["<110", ">135", "128-135"]
        assert impacts[1].impact == 0.75
        assert impacts[1].n == 2


class TestBestTimeSlots:

    def test_ranked_by_mean_and_requires_two_sessions(self):
        items = [
            scored("a", 1.0, started_at=at_hour(7)),
            scored("b", 0.8, started_at=at_hour(8)),
            scored("c", 0.2, started_at=at_hour(18)),
            scored("d", 0.0, started_at=at_hour(19)),
            scored("e", 3.0, started_at=at_hour(11)),  # single session, excluded
            scored("f", -1.0, started_at=at_hour(14)),
            scored("g", -1.0, started_at=at_hour(15)),
        ]
        slots = best_time_slots(items)
        assert [s["bucket"] for s in slots] == ["06–09", "17–20"]
        assert slots[0]["n"] == 2
        assert slots[0]["score"] == 0.9
        # overall mean = 3.0 / 7
        assert slots[0]["uplift"] == round(0.9 - 3.0 / 7, 2)
        assert slots[0]["confidence"] == "low"

    def test_undated_sessions_are_ignored(self):
        items = [scored("a", 1.0, started_at=None), scored("b", 1.0, started_at=None)]
        assert best_time_slots(items) == []

    def test_empty(self):
        assert best_time_slots([]) == []
