"""
Session Joiner

Joins a user's performance sessions with their pre-session music context and
mood deltas into one record per session.

Order of work per call:
1. performance rows (fatal on failure; short-circuits when empty)
2. music context + mood deltas, fetched concurrently for the known session ids
   (music is fatal on failure, mood is optional and degrades to None)
3. projection through id -> row lookup maps
4. genre/artist post-filter (after the join, so it never reduces what is fetched)
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from core.exceptions import UpstreamFetchError
from services.event_store import EventStore
from services.music_context import coerce_label, coerce_number, normalize_music_row

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One workout joined with its pre-session music context and mood delta."""

    session_id: str
    user_id: str
    started_at: Optional[datetime]
    split_label: Optional[str] = None
    tonnage: Optional[float] = None
    tonnage_z: Optional[float] = None
    sets_count: Optional[int] = None
    pre_energy: Optional[float] = None
    pre_valence: Optional[float] = None
    pre_bpm: Optional[float] = None
    pre_top_genre: Optional[str] = None
    pre_top_artist: Optional[str] = None
    mood_delta: Optional[float] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """datetime or ISO-8601 string -> aware datetime (naive values are taken as UTC)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_int(value: Any) -> Optional[int]:
    number = coerce_number(value)
    return int(number) if number is not None else None


def session_from_rows(
    perf: Dict[str, Any],
    music: Optional[Dict[str, Any]],
    mood_delta: Optional[float],
) -> Session:
    music = music or {}
    return Session(
        session_id=str(perf.get("workout_id")),
        user_id=str(perf.get("user_id")),
        started_at=parse_timestamp(perf.get("started_at")),
        split_label=coerce_label(perf.get("split_name")),
        tonnage=coerce_number(perf.get("tonnage")),
        tonnage_z=coerce_number(perf.get("tonnage_z")),
        sets_count=_as_int(perf.get("sets_count")),
        pre_energy=music.get("pre_energy"),
        pre_valence=music.get("pre_valence"),
        pre_bpm=music.get("pre_bpm"),
        pre_top_genre=music.get("pre_top_genre"),
        pre_top_artist=music.get("pre_top_artist"),
        mood_delta=mood_delta,
    )


def clean_filter(value: Optional[str]) -> Optional[str]:
    """Blank filter values mean "no filter"."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def apply_label_filters(
    sessions: Iterable[Session],
    genre: Optional[str] = None,
    artist: Optional[str] = None,
) -> List[Session]:
    """Case-insensitive exact-match filter on the dominant genre/artist."""
    result = list(sessions)
    if genre and genre.strip():
        wanted = genre.strip().lower()
        result = [s for s in result if (s.pre_top_genre or "").lower() == wanted]
    if artist and artist.strip():
        wanted = artist.strip().lower()
        result = [s for s in result if (s.pre_top_artist or "").lower() == wanted]
    return result


async def _fetch_mood_deltas(store: EventStore, session_ids: List[str]) -> Dict[str, Optional[float]]:
    try:
        rows = await store.list_mood_deltas(session_ids)
    except Exception as e:
        # Mood deltas are optional; sessions keep mood_delta=None.
        logger.warning(
            f"Mood delta fetch failed, continuing without mood data: {e}",
            extra={"extra_fields": {"sessions": len(session_ids)}},
        )
        return {}
    by_session: Dict[str, Optional[float]] = {}
    for row in rows or []:
        session_id = row.get("workout_id")
        if session_id is None:
            continue
        by_session[str(session_id)] = coerce_number(row.get("mood_delta"))
    return by_session


async def _fetch_music_context(store: EventStore, session_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    try:
        rows = await store.list_music_context(session_ids)
    except Exception as e:
        raise UpstreamFetchError("music_pre", str(e)) from e
    by_session: Dict[str, Dict[str, Any]] = {}
    for row in rows or []:
        mapped = normalize_music_row(row)
        if mapped["session_id"]:
            by_session[mapped["session_id"]] = mapped  # last write wins
    return by_session


async def join_sessions(
    store: EventStore,
    user_id: str,
    since: datetime,
    *,
    until: Optional[datetime] = None,
    split: Optional[str] = None,
    genre: Optional[str] = None,
    artist: Optional[str] = None,
    ascending: bool = False,
) -> List[Session]:
    """
    Build the joined session list for one user.

    Args:
        store: Event store to read from
        user_id: Verified user identity
        since: Inclusive lower bound on started_at
        until: Optional inclusive upper bound on started_at
        split: Split label, filtered by the store
        genre: Dominant pre-session genre, filtered after the join
        artist: Dominant pre-session artist, filtered after the join
        ascending: Order by started_at ascending instead of descending

    Returns:
        Sessions ordered by started_at as requested.

    Raises:
        UpstreamFetchError: if the performance or music-context read fails
    """
    try:
        perf_rows = await store.list_performance_sessions(
            user_id, since, until=until, split=split or None, ascending=ascending
        )
    except Exception as e:
        raise UpstreamFetchError("perf", str(e)) from e

    perf_rows = list(perf_rows or [])
    if not perf_rows:
        return []

    session_ids = [str(row.get("workout_id")) for row in perf_rows]

    music_by_session, mood_by_session = await asyncio.gather(
        _fetch_music_context(store, session_ids),
        _fetch_mood_deltas(store, session_ids),
    )

    joined = [
        session_from_rows(
            perf,
            music_by_session.get(session_id),
            mood_by_session.get(session_id),
        )
        for perf, session_id in zip(perf_rows, session_ids)
    ]

    logger.debug(
        f"Joined {len(joined)} sessions for user {user_id}",
        extra={"extra_fields": {
            "with_music": sum(1 for s in session_ids if s in music_by_session),
            "with_mood": sum(1 for v in mood_by_session.values() if v is not None),
        }},
    )

    return apply_label_filters(joined, genre=genre, artist=artist)
