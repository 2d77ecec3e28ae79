"""
Insight Scoring Engine

Turns joined sessions into per-session scores and provides the small set of
statistics shared by every insights view.

Score model (fixed design constants, not learned):

    perf_z = tonnage_z                      (0 when missing)
    mood_z = (mood_delta - mu) / sigma      (0 when missing or not computable)
    score  = 0.6 * perf_z + 0.4 * mood_z

tonnage_z arrives pre-standardized from the performance view and is used as-is.
mood_z is standardized against the sessions passed in (the request's filtered
cohort) using the population standard deviation. It needs at least two mood
observations and a non-zero spread; otherwise every mood_z is 0.
"""
import math
from dataclasses import dataclass
from statistics import pstdev
from typing import Iterable, List, Optional, Sequence

from services.session_join import Session

PERF_WEIGHT = 0.6
MOOD_WEIGHT = 0.4

MIN_MOOD_OBSERVATIONS = 2

# Confidence tiers: (min n, min |effect|). Checked in order; anything else is "low".
CONFIDENCE_TIERS = (
    ("high", 25, 0.30),
    ("medium", 10, 0.15),
)


@dataclass
class ScoredSession:
    session: Session
    perf_z: float
    mood_z: float
    score: float


def is_finite(value: Optional[float]) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def finite_values(values: Iterable[Optional[float]]) -> List[float]:
    return [float(v) for v in values if is_finite(v)]


def nan_mean(values: Iterable[Optional[float]]) -> float:
    """Mean of the finite values; NaN when there are none."""
    finite = finite_values(values)
    if not finite:
        return math.nan
    return sum(finite) / len(finite)


def diff_in_means(a: Iterable[Optional[float]], b: Iterable[Optional[float]]) -> float:
    return nan_mean(a) - nan_mean(b)


def round_or_none(value: Optional[float], digits: int = 2) -> Optional[float]:
    if not is_finite(value):
        return None
    return round(value, digits)


def confidence_tier(n: int, effect_abs: float) -> str:
    """
    Heuristic confidence gate on sample size and absolute effect.

    Not a significance test. A point must satisfy both bounds of a tier;
    satisfying only one falls through to the next tier.
    """
    effect = abs(effect_abs) if is_finite(effect_abs) else 0.0
    for tier, min_n, min_effect in CONFIDENCE_TIERS:
        if n >= min_n and effect >= min_effect:
            return tier
    return "low"


def mood_z_scores(sessions: Sequence[Session]) -> List[float]:
    """Standardize mood deltas within the cohort (population stddev)."""
    observed = finite_values(s.mood_delta for s in sessions)
    if len(observed) < MIN_MOOD_OBSERVATIONS:
        return [0.0] * len(sessions)

    mu = sum(observed) / len(observed)
    sigma = pstdev(observed, mu)
    if sigma == 0 or not math.isfinite(sigma):
        return [0.0] * len(sessions)

    return [
        (s.mood_delta - mu) / sigma if is_finite(s.mood_delta) else 0.0
        for s in sessions
    ]


def score_sessions(sessions: Sequence[Session]) -> List[ScoredSession]:
    """Score every session; the output preserves input order."""
    if not sessions:
        return []

    mood_zs = mood_z_scores(sessions)
    scored = []
    for session, mood_z in zip(sessions, mood_zs):
        perf_z = float(session.tonnage_z) if is_finite(session.tonnage_z) else 0.0
        scored.append(ScoredSession(
            session=session,
            perf_z=perf_z,
            mood_z=mood_z,
            score=PERF_WEIGHT * perf_z + MOOD_WEIGHT * mood_z,
        ))
    return scored


def overall_mean(scored: Sequence[ScoredSession]) -> float:
    """Mean score of the cohort; 0.0 for an empty cohort so it can be subtracted."""
    value = nan_mean(s.score for s in scored)
    return value if math.isfinite(value) else 0.0
