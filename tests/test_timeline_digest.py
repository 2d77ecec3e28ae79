"""
Tests for the timeline digests: sessions grouped by day, and the merged
workout/mood/music feed with per-day summaries.
"""
from datetime import datetime, timezone

from fixtures.insight_fixtures import make_session
from services.timeline_digest import UNKNOWN_DAY, build_timeline, group_sessions_by_day


def utc(day, hour, minute=0):
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


class TestGroupSessionsByDay:

    def test_days_descending(self):
        sessions = [
            make_session("a", started_at=utc(12, 9)),
            make_session("b", started_at=utc(14, 18)),
            make_session("c", started_at=utc(12, 19)),
        ]
        days = group_sessions_by_day(sessions)
        assert [d["date"] for d in days] == ["2024-06-14", "2024-06-12"]
        assert [s["workout_id"] for s in days[1]["sessions"]] == ["a", "c"]
        assert days[0]["sessions"][0]["started_at"] == "2024-06-14T18:00:00+00:00"

    def test_undated_sessions_grouped_as_unknown(self):
        days = group_sessions_by_day([make_session("a", started_at=None)])
        assert days == [{"date": UNKNOWN_DAY, "sessions": [days[0]["sessions"][0]]}]
        assert days[0]["sessions"][0]["started_at"] is None

    def test_empty(self):
        assert group_sessions_by_day([]) == []


class TestBuildTimeline:

    def _inputs(self):
        sessions = [
            make_session("w1", started_at=utc(14, 18), split_label="Push", tonnage=5000.4, sets_count=20, pre_top_genre="Hip-Hop"),
            make_session("w2", started_at=utc(14, 7), split_label="Legs", tonnage=6200.0, pre_top_genre="Pop"),
            make_session("w3", started_at=utc(13, 17), split_label="Pull", pre_top_genre="Pop"),
        ]
        moods = [
            {"id": "m1", "created_at": "2024-06-14T19:00:00Z", "score": 4, "post_workout": True, "contexts": ["gym"]},
            {"id": "m2", "created_at": "2024-06-14T08:00:00Z", "score": "3"},
            {"id": "m3", "created_at": "garbage", "score": 5},
        ]
        listens = [
            {"id": "l1", "played_at": "2024-06-14T17:40:00+00:00", "track_id": "t1", "track_name": "HUMBLE.", "artist_name": "Kendrick Lamar"},
            {"id": "l2", "played_at": "2024-06-14T17:45:00+00:00", "track_id": "t2"},
            {"id": "l3", "played_at": "2024-06-13T16:50:00+00:00", "track_id": "t1"},
        ]
        durations = {"t1": 180000.0, "t2": 240000.0}
        return sessions, moods, listens, durations

    def test_merged_and_grouped_descending(self):
        sessions, moods, listens, durations = self._inputs()
        days = build_timeline(sessions, moods, listens, durations)

        assert [d["date"] for d in days] == ["2024-06-14", "2024-06-13"]
        today = days[0]
        assert [(e["type"], e["id"]) for e in today["entries"]] == [
            ("mood", "m1"),
            ("workout", "w1"),
            ("music", "l2"),
            ("music", "l1"),
            ("mood", "m2"),
            ("workout", "w2"),
        ]

    def test_day_summary(self):
        sessions, moods, listens, durations = self._inputs()
        today, yesterday = build_timeline(sessions, moods, listens, durations)

        assert today["summary"] == {
            "mood_avg": 3.5,
            "mood_count": 2,
            "workout_volume": 11200,
            "workout_count": 2,
            "music_minutes": 7,
            "track_count": 2,
            "top_genre": "Hip-Hop",
        }
        assert yesterday["summary"]["workout_volume"] is None
        assert yesterday["summary"]["workout_count"] == 1
        assert yesterday["summary"]["mood_avg"] is None
        assert yesterday["summary"]["music_minutes"] == 3
        assert yesterday["summary"]["top_genre"] == "Pop"

    def test_ascending(self):
        sessions, moods, listens, durations = self._inputs()
        days = build_timeline(sessions, moods, listens, durations, sort="asc")
        assert [d["date"] for d in days] == ["2024-06-13", "2024-06-14"]
        assert days[1]["entries"][0]["id"] == "w2"

    def test_entry_shapes(self):
        sessions, moods, listens, durations = self._inputs()
        entries = build_timeline(sessions, moods, listens, durations)[0]["entries"]
        mood = entries[0]
        assert mood["score"] == 4.0
        assert mood["post_workout"] is True
        assert mood["label"] == "gym"
        workout = entries[1]
        assert workout["name"] == "Push"
        assert workout["sets"] == 20
        assert workout["pre"]["genre"] == "Hip-Hop"
        music = entries[3]
        assert music["track_name"] == "HUMBLE."
        assert music["duration_ms"] == 180000

    def test_unknown_durations_give_no_minutes(self):
        listens = self._inputs()[2]
        today = build_timeline([], [], listens)[0]
        assert today["summary"]["music_minutes"] is None
        assert today["summary"]["track_count"] == 2

    def test_undated_workouts_dropped(self):
        days = build_timeline([make_session("w", started_at=None)])
        assert days == []

    def test_empty(self):
        assert build_timeline([]) == []
