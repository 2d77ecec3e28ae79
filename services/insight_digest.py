"""
Insight Digest Composer

Turns ranked label impacts into what the app shows:

- the insights summary (headline, boosters/drainers per genre and artist,
  energy and BPM band rankings, music effects, play link)
- the weekly digest (tone line, diversified booster chips, drainer chips,
  best time slots, pairings, evidence lines, state flags)

Every section degrades to an explicit empty or neutral state on sparse data.
Nothing here raises for lack of data, and no placeholder numbers are emitted:
a missing value is None, a missing list is [].
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from core.config import settings
from services.insight_buckets import (
    LabelImpact,
    aggregate_impacts,
    artist_of,
    best_time_slots,
    bpm_band_of,
    bucket_hour,
    energy_band_of,
    genre_of,
    label_key,
    likelihood_label,
    local_time,
    split_of,
    time_bucket_of,
)
from services.insight_scoring import (
    ScoredSession,
    confidence_tier,
    diff_in_means,
    finite_values,
    is_finite,
    nan_mean,
    overall_mean,
    round_or_none,
)
from services.session_join import Session

logger = logging.getLogger(__name__)

# Digest limits
MAX_BOOSTERS = 3
MAX_DRAINERS = 2
MAX_SUMMARY_BOOSTERS = 3
MAX_SUMMARY_DRAINERS = 2
MAX_EVIDENCE_LINES = 5
MAX_PAIRINGS = 3
MAX_PLAY_TERMS = 2

# Weekly tone
TONE_WINDOW_DAYS = 7
TONE_DELTA_THRESHOLD = 0.15
TONE_MIN_RECENT_MOODS = 3

TONE_IMPROVED = "You felt better than usual."
TONE_DIPPED = "Energy dipped this week."
TONE_STEADY = "This week felt steady."
TONE_NO_SESSIONS = "No new sessions this week."
NOT_ENOUGH_DATA = "Not enough data yet."

# Thresholds for the summary music effects (pre-session energy / valence)
HIGH_ENERGY = 0.7
HIGH_VALENCE = 0.6

MIN_RECIPE_SESSIONS = 2
MIN_PATTERN_SESSIONS = 2
EVENING_START_HOUR = 17
EVENING_END_HOUR = 21

LOW_DATA_SESSIONS = 5
NEW_USER_SESSIONS = 2

DEFAULT_PLAY_TERM = "workout booster"

SUMMARY_NOTES = (
    "Likely = 10+ sessions · Tentative = 5–9 sessions · "
    "Anecdotal = under 5 sessions."
)

LOG_MOOD_TIP = "Log mood within two hours after workouts."

# Chip kinds, in the order their pools are walked when diversifying boosters.
KIND_MUSIC = "music"
KIND_WORKOUT = "workout"
KIND_TIME = "time"
KIND_DRAINER = "drainer"

PRIMARY_ACTIONS = {
    KIND_MUSIC: "Play",
    KIND_WORKOUT: "Add to plan",
    KIND_TIME: "Schedule",
    KIND_DRAINER: "Adjust",
}


@dataclass
class DigestFilters:
    days: int
    split: Optional[str] = None
    genre: Optional[str] = None
    artist: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Small mappings
# ---------------------------------------------------------------------------

def map_effect(impact: float) -> str:
    if impact >= 0.6:
        return "Big boost"
    if impact >= 0.2:
        return "Helps"
    if impact <= -0.4:
        return "Drains"
    return "Neutral"


def map_reliability(n: int) -> str:
    if n >= 10:
        return "Consistent"
    if n >= 5:
        return "Often"
    return "Early hint"


def clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def play_url(genres: Sequence[str]) -> str:
    terms = " ".join(list(genres)[:MAX_PLAY_TERMS]) or DEFAULT_PLAY_TERM
    return f"{settings.SPOTIFY_SEARCH_BASE_URL}{quote(terms)}"


def format_evidence_line(session: Session, better: bool) -> str:
    moment = local_time(session.started_at)
    return (
        f"{moment.strftime('%a')} {moment.strftime('%H:%M')} "
        f"{session.split_label or 'Workout'} + {session.pre_top_genre or 'Music'}, "
        f"you felt {'better' if better else 'worse'} after."
    )


def _felt_better(session: Session) -> bool:
    return is_finite(session.mood_delta) and session.mood_delta > 0


# ---------------------------------------------------------------------------
# Weekly tone
# ---------------------------------------------------------------------------

def tone_line(sessions: Sequence[Session], now: Optional[datetime] = None) -> str:
    """
    Headline copy comparing the last 7 days of mood deltas with the 7 before.

    Decision tree:
    - no session in the last 7 days            -> "no new sessions"
    - fewer than 3 recent mood observations    -> steady
    - recent mean - previous mean >  0.15      -> improved
    - recent mean - previous mean < -0.15      -> dipped
    - otherwise                                -> steady
    An empty previous window counts as a mean of 0.
    """
    now = now or _utcnow()
    week_start = now - timedelta(days=TONE_WINDOW_DAYS)
    prev_start = now - timedelta(days=2 * TONE_WINDOW_DAYS)

    dated = [s for s in sessions if s.started_at is not None]
    recent = [s for s in dated if s.started_at >= week_start]
    previous = [s for s in dated if prev_start <= s.started_at < week_start]

    if not recent:
        return TONE_NO_SESSIONS

    recent_moods = finite_values(s.mood_delta for s in recent)
    if len(recent_moods) < TONE_MIN_RECENT_MOODS:
        return TONE_STEADY

    previous_moods = finite_values(s.mood_delta for s in previous)
    previous_mean = nan_mean(previous_moods) if previous_moods else 0.0
    delta = nan_mean(recent_moods) - previous_mean

    if delta > TONE_DELTA_THRESHOLD:
        return TONE_IMPROVED
    if delta < -TONE_DELTA_THRESHOLD:
        return TONE_DIPPED
    return TONE_STEADY


# ---------------------------------------------------------------------------
# Evidence and chips
# ---------------------------------------------------------------------------

def _evidence_key(kind: str, label: str) -> str:
    return f"{kind}:{label_key(label)}"


def build_evidence(scored: Sequence[ScoredSession]) -> Dict[str, List[str]]:
    """`kind:label` (label case-folded) -> up to 5 evidence lines, in session order."""
    evidence: Dict[str, List[str]] = {}

    def add(key: str, line: str):
        lines = evidence.setdefault(key, [])
        if len(lines) < MAX_EVIDENCE_LINES:
            lines.append(line)

    for item in scored:
        session = item.session
        if session.started_at is None:
            continue
        line = format_evidence_line(session, _felt_better(session))
        if session.pre_top_genre:
            add(_evidence_key(KIND_MUSIC, session.pre_top_genre), line)
        if session.split_label:
            add(_evidence_key(KIND_WORKOUT, session.split_label), line)
        add(_evidence_key(KIND_TIME, bucket_hour(session.started_at)), line)
    return evidence


def _recommendation(kind: str, label: str) -> str:
    if kind == KIND_MUSIC:
        return f"Queue {label} before your next session."
    if kind == KIND_WORKOUT:
        return f"Keep {label} in your plan."
    if kind == KIND_TIME:
        return f"Schedule sessions in the {label} slot."
    return f"Try lighter work or different music instead of {label}."


def make_chip(kind: str, source_kind: str, impact: LabelImpact, evidence: Dict[str, List[str]]) -> Dict:
    return {
        "id": f"{kind}:{impact.label}",
        "kind": kind,
        "label": impact.label,
        "impact": impact.impact,
        "n": impact.n,
        "effect": map_effect(impact.impact),
        "reliability": map_reliability(impact.n),
        "primary": PRIMARY_ACTIONS[kind],
        "evidence": list(evidence.get(_evidence_key(source_kind, impact.label), []))[:MAX_EVIDENCE_LINES],
        "recommendation": _recommendation(kind, impact.label),
    }


def _candidate_pools(scored: Sequence[ScoredSession]) -> Dict[str, List[LabelImpact]]:
    return {
        KIND_MUSIC: aggregate_impacts(scored, genre_of),
        KIND_WORKOUT: aggregate_impacts(scored, split_of),
        KIND_TIME: aggregate_impacts(scored, time_bucket_of),
    }


def select_boosters(pools: Dict[str, List[LabelImpact]], evidence: Dict[str, List[str]]) -> List[Dict]:
    """Up to 3 positive chips, at most one per kind; first match per kind wins."""
    pool = [
        (kind, impact)
        for kind in (KIND_MUSIC, KIND_WORKOUT, KIND_TIME)
        for impact in pools[kind]
        if impact.impact > 0
    ]
    boosters = []
    used_kinds = set()
    for kind, impact in pool:
        if len(boosters) >= MAX_BOOSTERS:
            break
        if kind in used_kinds:
            continue
        boosters.append(make_chip(kind, kind, impact, evidence))
        used_kinds.add(kind)
    return boosters


def select_drainers(pools: Dict[str, List[LabelImpact]], evidence: Dict[str, List[str]]) -> List[Dict]:
    """Up to 2 negative chips, no diversification."""
    pool = [
        (kind, impact)
        for kind in (KIND_MUSIC, KIND_WORKOUT, KIND_TIME)
        for impact in pools[kind]
        if impact.impact < 0
    ]
    return [make_chip(KIND_DRAINER, kind, impact, evidence) for kind, impact in pool[:MAX_DRAINERS]]


# ---------------------------------------------------------------------------
# Pairings / recipe
# ---------------------------------------------------------------------------

def pairing_of(session: Session) -> Optional[str]:
    if session.split_label and session.pre_top_genre:
        return f"{session.split_label} × {session.pre_top_genre}"
    return None


def rank_pairings(scored: Sequence[ScoredSession]) -> List[LabelImpact]:
    """Split × genre combinations with a positive impact and enough sessions."""
    return [
        impact for impact in aggregate_impacts(scored, pairing_of)
        if impact.impact > 0 and impact.n >= MIN_RECIPE_SESSIONS
    ]


def best_recipe(scored: Sequence[ScoredSession]) -> Optional[Dict]:
    pairings = rank_pairings(scored)
    if not pairings:
        return None
    top = pairings[0]
    # pairing_of builds "split × genre"; recover both sides from a witness session
    wanted = label_key(top.label)
    witness = next(s.session for s in scored if label_key(pairing_of(s.session) or "") == wanted)
    return {
        "split": witness.split_label,
        "genre": witness.pre_top_genre,
        "impact": top.impact,
        "n": top.n,
        "confidence": confidence_tier(top.n, abs(top.impact)),
    }


# ---------------------------------------------------------------------------
# Weekly digest
# ---------------------------------------------------------------------------

def _is_evening_push_hiphop(session: Session) -> bool:
    if session.started_at is None:
        return False
    hour = local_time(session.started_at).hour
    return (
        EVENING_START_HOUR <= hour <= EVENING_END_HOUR
        and "push" in (session.split_label or "").lower()
        and "hip" in (session.pre_top_genre or "").lower()
    )


def pattern_line(sessions: Sequence[Session], boosters: Sequence[Dict]) -> str:
    """Second headline line: a recurring evening Push + Hip-Hop habit, else the top booster."""
    if sum(1 for s in sessions if _is_evening_push_hiphop(s)) >= MIN_PATTERN_SESSIONS:
        return "Evening Push with Hip-Hop usually lifts you."
    if not boosters:
        return NOT_ENOUGH_DATA
    top = boosters[0]
    if top["kind"] == KIND_MUSIC:
        return f"{top['label']} before training usually lifts you."
    if top["kind"] == KIND_WORKOUT:
        return f"{top['label']} sessions usually lift you."
    return f"Sessions in the {top['label']} slot usually go better."


def compose_weekly_digest(
    scored: Sequence[ScoredSession],
    music_connected: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Weekly digest payload.

    Args:
        scored: Scored sessions for the digest window, newest first
        music_connected: Whether the user linked a streaming account
        now: Reference time for the 7-day windows (defaults to now, UTC)
    """
    now = now or _utcnow()
    sessions = [s.session for s in scored]
    sample = len(sessions)
    week_start = now - timedelta(days=TONE_WINDOW_DAYS)
    any_this_week = any(s.started_at is not None and s.started_at >= week_start for s in sessions)

    evidence = build_evidence(scored)
    pools = _candidate_pools(scored)
    boosters = select_boosters(pools, evidence)
    drainers = select_drainers(pools, evidence)

    music_labels = [b["label"] for b in boosters if b["kind"] == KIND_MUSIC]
    url = play_url(music_labels)

    if any_this_week:
        actions = [
            {
                "id": "start_booster",
                "label": "Start booster playlist" if music_connected else "Connect Spotify",
                "primary": True,
                "href": url if music_connected else "/music",
            },
            {"id": "open_plan", "label": "Open plan", "primary": False, "target": "#plan"},
            {"id": "see_why", "label": "See why", "primary": False},
        ]
    else:
        actions = [
            {"id": "plan_one", "label": "Plan one session", "primary": True, "target": "#plan"},
            {"id": "see_why", "label": "See why", "primary": False},
        ]

    summary_evidence = [
        format_evidence_line(s, True)
        for s in sessions
        if s.started_at is not None and _felt_better(s)
    ][:MAX_EVIDENCE_LINES]

    pairings = [
        {
            "id": impact.label,
            "label": impact.label,
            "effect": map_effect(impact.impact),
            "impact": impact.impact,
            "n": impact.n,
            "cta": "Use this",
        }
        for impact in rank_pairings(scored)[:MAX_PAIRINGS]
    ]

    logger.debug(
        "Composed weekly digest",
        extra={"extra_fields": {"sample": sample, "boosters": len(boosters), "drainers": len(drainers)}},
    )

    return {
        "sample": sample,
        "states": {
            "new_user": sample < NEW_USER_SESSIONS,
            "low_data": sample < LOW_DATA_SESSIONS,
            "stale": not any_this_week,
            "music_connected": music_connected,
        },
        "weekly_summary": {
            "line1": tone_line(sessions, now),
            "line2": pattern_line(sessions, boosters),
            "actions": actions,
            "evidence": summary_evidence,
        },
        "chips": {
            "boosters": boosters,
            "drainers": drainers,
        },
        "best": {
            "slots": [slot["bucket"] for slot in best_time_slots(scored)],
            "pairings": pairings,
        },
        "tip": LOG_MOOD_TIP,
    }


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def impact_item(impact: LabelImpact) -> Dict:
    return {
        "label": impact.label,
        "impact": impact.impact,
        "n": impact.n,
        "confidence": confidence_tier(impact.n, abs(impact.impact)),
        "likelihood": likelihood_label(impact.n),
    }


def split_boosters_drainers(impacts: Sequence[LabelImpact]):
    boosters = [impact_item(i) for i in impacts if i.impact > 0][:MAX_SUMMARY_BOOSTERS]
    drainers = [impact_item(i) for i in impacts if i.impact < 0][:MAX_SUMMARY_DRAINERS]
    return boosters, drainers


def band_rankings(scored: Sequence[ScoredSession]) -> Dict:
    """
    Energy and BPM bands ranked by impact on the session score.

    best_bpm is the band with the largest positive impact (first in ranking
    order on ties), or None when no band lifts the score.
    """
    energy = [impact_item(i) for i in aggregate_impacts(scored, energy_band_of)]
    bpm = [impact_item(i) for i in aggregate_impacts(scored, bpm_band_of)]
    lifting = [item for item in bpm if item["impact"] > 0]
    return {
        "energy": energy,
        "bpm": bpm,
        "best_bpm": max(lifting, key=lambda item: item["impact"]) if lifting else None,
    }


def music_effect(headline: str, high: List[Optional[float]], rest: List[Optional[float]]) -> Dict:
    """High-vs-rest comparison card; uplift is None when either side is empty."""
    effect = diff_in_means(high, rest)
    n = len(finite_values(high)) + len(finite_values(rest))
    return {
        "headline": headline,
        "uplift": round_or_none(effect),
        "n": n,
        "confidence": confidence_tier(n, abs(effect) if is_finite(effect) else 0.0),
    }


def music_effects(sessions: Sequence[Session]) -> Dict:
    energetic = [s for s in sessions if (s.pre_energy or 0) >= HIGH_ENERGY]
    calm = [s for s in sessions if (s.pre_energy or 0) < HIGH_ENERGY]
    bright = [s for s in sessions if (s.pre_valence or 0) >= HIGH_VALENCE]
    dim = [s for s in sessions if (s.pre_valence or 0) < HIGH_VALENCE]
    return {
        "music_to_performance": music_effect(
            f"High-energy (≥{HIGH_ENERGY}) pre-workout vs baseline",
            [s.tonnage_z for s in energetic],
            [s.tonnage_z for s in calm],
        ),
        "music_to_mood": music_effect(
            f"High-valence (≥{HIGH_VALENCE}) pre-workout vs baseline",
            [s.mood_delta for s in bright],
            [s.mood_delta for s in dim],
        ),
    }


def compose_summary(
    scored: Sequence[ScoredSession],
    filters: DigestFilters,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Insights summary payload.

    headline.score is the cohort's mean session score clamped to [-1, 1]
    (None without sessions); best_time and recipe are None when no bucket or
    pairing has enough sessions.
    """
    sessions = [s.session for s in scored]

    genre_boosters, genre_drainers = split_boosters_drainers(aggregate_impacts(scored, genre_of))
    artist_boosters, artist_drainers = split_boosters_drainers(aggregate_impacts(scored, artist_of))

    slots = best_time_slots(scored, limit=1)
    score = round(clamp(overall_mean(scored)), 2) if scored else None

    return {
        "filters": {
            "days": filters.days,
            "split": filters.split or None,
            "genre": filters.genre or None,
            "artist": filters.artist or None,
            "sample": len(sessions),
        },
        "headline": {
            "score": score,
            "best_time": slots[0] if slots else None,
            "recipe": best_recipe(scored),
            "copy": tone_line(sessions, now) if sessions else NOT_ENOUGH_DATA,
        },
        "boosters": {"genres": genre_boosters, "artists": artist_boosters},
        "drainers": {"genres": genre_drainers, "artists": artist_drainers},
        "bands": band_rankings(scored),
        "effects": music_effects(sessions),
        "recommendations": {
            "play_url": play_url([b["label"] for b in genre_boosters]),
            "notes": SUMMARY_NOTES,
        },
    }
