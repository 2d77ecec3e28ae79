"""
Timeline digests.

Two views over the same event stream, both grouped by calendar day
(`YYYY-MM-DD`, UTC day boundaries):

- `group_sessions_by_day`: joined sessions only, newest day first. Backs the
  insights timeline.
- `build_timeline`: workouts, mood logs and listens merged into one feed, each
  day carrying a summary (mood average, training volume, minutes of music,
  counts and the day's dominant pre-workout genre).
"""
from collections import Counter, OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from services.insight_scoring import finite_values, round_or_none
from services.music_context import coerce_label, coerce_number
from services.session_join import Session, parse_timestamp

UNKNOWN_DAY = "Unknown"
ENTRY_TYPES = ("workout", "mood", "music")


def day_key(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).date().isoformat()


def session_entry(session: Session) -> Dict[str, Any]:
    return {
        "workout_id": session.session_id,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "split_name": session.split_label,
        "tonnage": session.tonnage,
        "sets_count": session.sets_count,
        "tonnage_z": session.tonnage_z,
        "pre_energy": session.pre_energy,
        "pre_valence": session.pre_valence,
        "pre_top_genre": session.pre_top_genre,
        "pre_top_artist": session.pre_top_artist,
        "mood_delta": session.mood_delta,
    }


def group_sessions_by_day(sessions: Sequence[Session]) -> List[Dict[str, Any]]:
    """[{date, sessions}] with days newest first; undated sessions go under "Unknown"."""
    days: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for session in sessions:
        key = day_key(session.started_at) or UNKNOWN_DAY
        days.setdefault(key, []).append(session_entry(session))
    ordered = sorted(days.items(), key=lambda item: item[0], reverse=True)
    return [{"date": date, "sessions": entries} for date, entries in ordered]


def workout_entry(session: Session) -> Dict[str, Any]:
    return {
        "type": "workout",
        "id": session.session_id,
        "at": session.started_at.isoformat() if session.started_at else None,
        "name": session.split_label or "Workout",
        "split_name": session.split_label,
        "volume": session.tonnage,
        "sets": session.sets_count,
        "z": session.tonnage_z,
        "pre": {
            "energy": session.pre_energy,
            "valence": session.pre_valence,
            "genre": session.pre_top_genre,
            "artist": session.pre_top_artist,
        },
        "mood_delta": session.mood_delta,
    }


def mood_entry(row: Mapping[str, Any], at: datetime) -> Dict[str, Any]:
    return {
        "type": "mood",
        "id": str(row.get("id")),
        "at": at.isoformat(),
        "score": coerce_number(row.get("score")),
        "post_workout": bool(row.get("post_workout")),
        "energy": coerce_number(row.get("energy")),
        "stress": coerce_number(row.get("stress")),
        "label": coerce_label(row.get("contexts")),
    }


def music_entry(row: Mapping[str, Any], at: datetime, durations: Mapping[str, Optional[float]]) -> Dict[str, Any]:
    track_id = str(row.get("track_id"))
    duration = durations.get(track_id)
    return {
        "type": "music",
        "id": str(row.get("id")),
        "at": at.isoformat(),
        "track_id": track_id,
        "track_name": coerce_label(row.get("track_name")),
        "artist_name": coerce_label(row.get("artist_name")),
        "album_image_url": coerce_label(row.get("album_image_url")),
        "duration_ms": int(duration) if duration is not None else None,
    }


def summarize_day(entries: Sequence[Dict[str, Any]], genres: Sequence[str]) -> Dict[str, Any]:
    moods = finite_values(e["score"] for e in entries if e["type"] == "mood")
    workouts = [e for e in entries if e["type"] == "workout"]
    volumes = finite_values(e["volume"] for e in workouts)
    tracks = [e for e in entries if e["type"] == "music"]
    music_ms = sum(e["duration_ms"] for e in tracks if e["duration_ms"] is not None)

    top_genre = None
    if genres:
        top_genre = Counter(genres).most_common(1)[0][0]

    return {
        "mood_avg": round_or_none(sum(moods) / len(moods)) if moods else None,
        "mood_count": len(moods),
        "workout_volume": round(sum(volumes)) if volumes else None,
        "workout_count": len(workouts),
        "music_minutes": round(music_ms / 60000) if music_ms else None,
        "track_count": len(tracks),
        "top_genre": top_genre,
    }


def build_timeline(
    sessions: Sequence[Session],
    mood_rows: Sequence[Mapping[str, Any]] = (),
    listen_rows: Sequence[Mapping[str, Any]] = (),
    durations: Optional[Mapping[str, Optional[float]]] = None,
    sort: str = "desc",
) -> List[Dict[str, Any]]:
    """
    Merge workouts, moods and listens into day blocks.

    Args:
        sessions: Joined sessions (become workout entries)
        mood_rows: Raw mood log rows (id, created_at, score, ...)
        listen_rows: Raw listen rows (id, played_at, track_id, ...)
        durations: track_id -> duration_ms
        sort: "asc" or "desc"; applies to days and to entries within a day

    Returns:
        [{date, summary, entries}]. Entries without a parseable timestamp are dropped.
    """
    durations = durations or {}
    descending = sort != "asc"

    timed: List[Tuple[datetime, Dict[str, Any]]] = []
    for session in sessions:
        if session.started_at is not None:
            timed.append((session.started_at, workout_entry(session)))
    for row in mood_rows:
        at = parse_timestamp(row.get("created_at"))
        if at is not None:
            timed.append((at, mood_entry(row, at)))
    for row in listen_rows:
        at = parse_timestamp(row.get("played_at"))
        if at is not None:
            timed.append((at, music_entry(row, at, durations)))

    timed.sort(key=lambda item: item[0], reverse=descending)

    days: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    genres_by_day: Dict[str, List[str]] = {}
    for at, entry in timed:
        key = day_key(at)
        days.setdefault(key, []).append(entry)
        if entry["type"] == "workout" and entry["pre"]["genre"]:
            genres_by_day.setdefault(key, []).append(entry["pre"]["genre"])

    blocks = [
        {
            "date": date,
            "summary": summarize_day(entries, genres_by_day.get(date, [])),
            "entries": entries,
        }
        for date, entries in days.items()
    ]
    blocks.sort(key=lambda block: block["date"], reverse=descending)
    return blocks
