"""
Sound map: a sparse grid of how sessions went under different music.

Modes:
- "genre" / "artist": rows are the dominant label ("(unknown)" when missing),
  columns are energy bands
- "bpm": rows are BPM bands, columns are energy bands

Only cells with at least one session are emitted.
"""
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from services.insight_buckets import bpm_band, energy_band
from services.insight_scoring import nan_mean, round_or_none
from services.session_join import Session

SOUNDMAP_MODES = ("genre", "artist", "bpm")
UNKNOWN_LABEL = "(unknown)"


def _row_key(session: Session, mode: str) -> Optional[str]:
    if mode == "bpm":
        return bpm_band(session.pre_bpm)
    label = session.pre_top_artist if mode == "artist" else session.pre_top_genre
    return label or UNKNOWN_LABEL


def build_soundmap(sessions: Sequence[Session], mode: str = "genre") -> List[Dict]:
    """
    Aggregate sessions into (row, energy band) cells.

    Each cell carries the session count and the mean performance (tonnage_z)
    and mean mood delta over the sessions that have those values, rounded to
    2 dp (None when no session in the cell has the value).
    """
    if mode not in SOUNDMAP_MODES:
        raise ValueError(f"Unknown sound map mode: {mode}")

    cells: "OrderedDict[Tuple[str, str], List[Session]]" = OrderedDict()
    for session in sessions:
        row = _row_key(session, mode)
        energy = energy_band(session.pre_energy)
        if not row or not energy:
            continue
        cells.setdefault((row, energy), []).append(session)

    row_field = "bpm" if mode == "bpm" else "label"
    result = []
    for (row, energy), members in cells.items():
        result.append({
            row_field: row,
            "energy": energy,
            "count": len(members),
            "perf": round_or_none(nan_mean(s.tonnage_z for s in members)),
            "mood": round_or_none(nan_mean(s.mood_delta for s in members)),
        })
    return result
