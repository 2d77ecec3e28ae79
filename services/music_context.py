"""
Pre-session music context normalization.

The `mv_sessions_music_pre` view is fed by several enrichment jobs (Spotify,
Deezer, Last.fm, Reccobeats) whose column names have drifted over time. This
module maps one raw row, whatever its keys, onto the canonical shape used by
the insights pipeline:

    {session_id, pre_energy, pre_valence, pre_bpm, pre_top_genre, pre_top_artist}

Resolution is table-driven: each field has an ordered tuple of aliases and the
first alias that yields a usable value wins. Keys are matched
case-insensitively. Nothing in here raises on bad data; an unusable field is
simply None.
"""
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

ENERGY_ALIASES = (
    "pre_energy", "energy", "avg_energy", "energy_mean",
    "energy_score", "energy_norm", "energy_index",
)
ENERGY_BUCKET_ALIASES = ("energy_bucket", "pre_energy_bucket")

VALENCE_ALIASES = (
    "pre_valence", "valence", "avg_valence", "valence_mean",
    "positivity", "happiness",
)
VALENCE_BUCKET_ALIASES = ("valence_bucket", "mood_bucket")

BPM_ALIASES = (
    "pre_bpm", "bpm", "avg_bpm", "tempo", "avg_tempo",
    "deezer_bpm", "spotify_bpm",
)

GENRE_ALIASES = (
    "pre_top_genre", "top_genre", "genre_primary", "primary_genre",
    "genre", "dominant_genre",
)
ARTIST_ALIASES = (
    "pre_top_artist", "top_artist", "artist", "artist_name", "dominant_artist",
)

SESSION_ID_ALIASES = ("workout_id", "session_id")

# Bucket labels are matched by prefix ("high-ish" -> high).
BUCKET_MIDPOINTS = (
    ("low", 0.2),
    ("mid", 0.5),
    ("high", 0.8),
)

BPM_FLOOR = 60.0
BPM_CEILING = 200.0


def _lower_keys(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    lowered = {}
    for key, value in raw.items():
        lowered[str(key).lower()] = value
    return lowered


def coerce_number(value: Any) -> Optional[float]:
    """Finite int/float, or a numeric string. Booleans are not numbers here."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return None
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except (OverflowError, ValueError):
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_label(value: Any) -> Optional[str]:
    """Non-empty string, first element of a non-empty sequence, or a `.name`."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, (list, tuple)):
        if not value or value[0] is None:
            return None
        first = str(value[0]).strip()
        return first or None
    if isinstance(value, Mapping):
        name = value.get("name")
    else:
        name = getattr(value, "name", None)
    if name is None:
        return None
    text = str(name).strip()
    return text or None


def pick_number(row: Mapping[str, Any], aliases: Iterable[str]) -> Optional[float]:
    for alias in aliases:
        number = coerce_number(row.get(alias.lower()))
        if number is not None:
            return number
    return None


def pick_label(row: Mapping[str, Any], aliases: Iterable[str]) -> Optional[str]:
    for alias in aliases:
        label = coerce_label(row.get(alias.lower()))
        if label is not None:
            return label
    return None


def session_id_of(row: Mapping[str, Any]) -> Optional[str]:
    for alias in SESSION_ID_ALIASES:
        value = row.get(alias)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def bucket_midpoint(label: Optional[str]) -> Optional[float]:
    if not label:
        return None
    lowered = label.lower()
    for prefix, midpoint in BUCKET_MIDPOINTS:
        if lowered.startswith(prefix):
            return midpoint
    return None


def energy_from_bpm(bpm: Optional[float]) -> Optional[float]:
    """Rescale a tempo into [0, 1] after clamping it to [60, 200] BPM."""
    if bpm is None:
        return None
    clamped = min(BPM_CEILING, max(BPM_FLOOR, bpm))
    return (clamped - BPM_FLOOR) / (BPM_CEILING - BPM_FLOOR)


def normalize_music_row(raw: Any, session_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Map one raw music-context record onto the canonical pre-session shape.

    Args:
        raw: Mapping with arbitrary key casing; anything else is treated as empty.
        session_id: Identifier to attach when the row does not carry one.

    Returns:
        Dict with session_id, pre_energy, pre_valence, pre_bpm,
        pre_top_genre and pre_top_artist. Unresolvable fields are None.
    """
    row = _lower_keys(raw)

    bpm = pick_number(row, BPM_ALIASES)

    energy = pick_number(row, ENERGY_ALIASES)
    if energy is None:
        energy = bucket_midpoint(pick_label(row, ENERGY_BUCKET_ALIASES))
    if energy is None:
        energy = energy_from_bpm(bpm)

    valence = pick_number(row, VALENCE_ALIASES)
    if valence is None:
        valence = bucket_midpoint(pick_label(row, VALENCE_BUCKET_ALIASES))

    resolved_id = session_id_of(row)
    if resolved_id is None and session_id is not None:
        resolved_id = str(session_id)

    return {
        "session_id": resolved_id,
        "pre_energy": energy,
        "pre_valence": valence,
        "pre_bpm": bpm,
        "pre_top_genre": pick_label(row, GENRE_ALIASES),
        "pre_top_artist": pick_label(row, ARTIST_ALIASES),
    }
