"""
Insight Aggregator / Bucketer

Groups scored sessions along label dimensions and ranks the labels by how far
their mean score sits from the cohort mean.

One generic aggregation (`aggregate_impacts`) serves every dimension; a
dimension is just a function Session -> label-or-None:

    genre        session.pre_top_genre
    artist       session.pre_top_artist
    split        session.split_label
    time of day  bucket_hour(session.started_at)
    energy band  energy_band(session.pre_energy)
    bpm band     bpm_band(session.pre_bpm)

Text labels are grouped case-insensitively.

Fixed categorical schemes (not configurable per request):

    hour of day   06–09 | 10–12 | 13–16 | 17–20 | 21–01 (21:00 through 05:59)
    energy        < 0.4 low | [0.4, 0.7) mid | >= 0.7 high
    bpm           < 110 | [110, 128) | [128, 135] | > 135
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config import settings
from services.insight_scoring import ScoredSession, confidence_tier, nan_mean, overall_mean
from services.session_join import Session

logger = logging.getLogger(__name__)

LabelFn = Callable[[Session], Optional[str]]

HOUR_BUCKETS = ("06–09", "10–12", "13–16", "17–20", "21–01")

ENERGY_LOW_MAX = 0.4
ENERGY_MID_MAX = 0.7

BPM_BANDS = ("<110", "110-127", "128-135", ">135")

MIN_SLOT_SESSIONS = 2


@dataclass
class LabelImpact:
    label: str
    impact: float
    n: int


@lru_cache(maxsize=8)
def _zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown INSIGHTS_TIMEZONE {name!r}, falling back to UTC")
        return timezone.utc


def local_time(moment: datetime) -> datetime:
    """Express a timestamp in the insights timezone."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(_zone(settings.INSIGHTS_TIMEZONE))


def bucket_for_hour(hour: int) -> str:
    if 6 <= hour <= 9:
        return "06–09"
    if 10 <= hour <= 12:
        return "10–12"
    if 13 <= hour <= 16:
        return "13–16"
    if 17 <= hour <= 20:
        return "17–20"
    return "21–01"


def bucket_hour(started_at: Optional[datetime]) -> Optional[str]:
    """Time-of-day bucket for a session start, or None when unknown."""
    if started_at is None:
        return None
    return bucket_for_hour(local_time(started_at).hour)


def energy_band(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    if value < ENERGY_LOW_MAX:
        return "low"
    if value < ENERGY_MID_MAX:
        return "mid"
    return "high"


def bpm_band(bpm: Optional[float]) -> Optional[str]:
    if bpm is None:
        return None
    if bpm < 110:
        return "<110"
    if bpm < 128:
        return "110-127"
    if bpm <= 135:
        return "128-135"
    return ">135"


def likelihood_label(n: int) -> str:
    """Legend used in the summary notes: Likely / Tentative / Anecdotal."""
    if n >= 10:
        return "Likely"
    if n >= 5:
        return "Tentative"
    return "Anecdotal"


def genre_of(session: Session) -> Optional[str]:
    return session.pre_top_genre


def artist_of(session: Session) -> Optional[str]:
    return session.pre_top_artist


def split_of(session: Session) -> Optional[str]:
    return session.split_label


def time_bucket_of(session: Session) -> Optional[str]:
    return bucket_hour(session.started_at)


def energy_band_of(session: Session) -> Optional[str]:
    return energy_band(session.pre_energy)


def bpm_band_of(session: Session) -> Optional[str]:
    return bpm_band(session.pre_bpm)


def label_key(label: str) -> str:
    """Grouping key for a label; matches the case-insensitive genre/artist filters."""
    return label.casefold()


def group_scores(scored: Sequence[ScoredSession], label_fn: LabelFn) -> "OrderedDict[str, List[float]]":
    """
    label -> scores, in first-seen label order. Unlabeled sessions are skipped.

    Labels differing only in case form one group, shown with the first-seen
    spelling.
    """
    names: Dict[str, str] = {}
    groups: "OrderedDict[str, List[float]]" = OrderedDict()
    for item in scored:
        label = label_fn(item.session)
        if not label:
            continue
        name = names.setdefault(label_key(label), label)
        groups.setdefault(name, []).append(item.score)
    return groups


def aggregate_impacts(
    scored: Sequence[ScoredSession],
    label_fn: LabelFn,
    baseline: Optional[float] = None,
) -> List[LabelImpact]:
    """
    Impact of each label on the session score.

    impact = mean(score of sessions with the label) - baseline, rounded to 2 dp,
    where baseline defaults to the mean over *all* sessions passed in (labeled
    or not). Sorted by |impact| descending, then n descending; remaining ties
    keep first-seen order.
    """
    if not scored:
        return []
    base = overall_mean(scored) if baseline is None else baseline

    impacts = [
        LabelImpact(label=label, impact=round(nan_mean(values) - base, 2), n=len(values))
        for label, values in group_scores(scored, label_fn).items()
    ]
    impacts.sort(key=lambda x: (-abs(x.impact), -x.n))
    return impacts


def best_time_slots(
    scored: Sequence[ScoredSession],
    limit: int = 2,
    min_n: int = MIN_SLOT_SESSIONS,
) -> List[Dict]:
    """
    Top hour buckets by mean score.

    Buckets with fewer than `min_n` sessions do not qualify (they are dropped,
    not zero-filled). Each slot carries its uplift over the cohort mean and a
    confidence tier for that uplift.
    """
    if not scored:
        return []
    base = overall_mean(scored)
    slots = []
    for bucket, values in group_scores(scored, time_bucket_of).items():
        if len(values) < min_n:
            continue
        mean_score = nan_mean(values)
        uplift = mean_score - base
        slots.append((mean_score, {
            "bucket": bucket,
            "score": round(mean_score, 2),
            "uplift": round(uplift, 2),
            "n": len(values),
            "confidence": confidence_tier(len(values), abs(uplift)),
        }))
    slots.sort(key=lambda x: (-x[0], -x[1]["n"]))
    return [slot for _, slot in slots[:limit]]
