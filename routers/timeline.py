"""
Timeline API Router

One feed of everything the user logged: workouts (joined with their music
context and mood delta), mood check-ins and listens, grouped by day with a
per-day summary.

Window selection, first match wins:
- from/to (either may be omitted; missing from = default window, missing to = now)
- range=today (UTC midnight to now)
- days (default window length)
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from fastapi import APIRouter, Depends, Query

from core.auth import CurrentUser, get_current_user
from core.config import settings
from core.database import get_event_store
from core.exceptions import UpstreamFetchError, ValidationError
from services.event_store import EventStore
from services.music_context import coerce_number
from services.session_join import clean_filter, join_sessions
from services.timeline_digest import ENTRY_TYPES, build_timeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/timeline", tags=["timeline"])


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def resolve_window(
    now: datetime,
    days: Optional[int] = None,
    range_: Optional[str] = None,
    from_: Optional[datetime] = None,
    to: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """(since, until) for the request. Raises ValidationError when from > to."""
    if from_ is not None or to is not None:
        until = _as_utc(to) if to is not None else now
        since = _as_utc(from_) if from_ is not None else until - timedelta(days=settings.INSIGHTS_DEFAULT_DAYS)
        if since > until:
            raise ValidationError("`from` must not be after `to`", field="from")
        return since, until
    if range_ == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0), now
    return now - timedelta(days=days or settings.INSIGHTS_DEFAULT_DAYS), now


def parse_types(raw: Optional[str]) -> List[str]:
    """Comma-separated entry types; empty means all of them."""
    if not raw or not raw.strip():
        return list(ENTRY_TYPES)
    wanted = [part.strip().lower() for part in raw.split(",") if part.strip()]
    unknown = [t for t in wanted if t not in ENTRY_TYPES]
    if unknown:
        raise ValidationError(
            f"Unknown timeline types: {', '.join(unknown)} (expected {', '.join(ENTRY_TYPES)})",
            field="types",
        )
    return [t for t in ENTRY_TYPES if t in wanted]


async def _nothing() -> list:
    return []


async def gather_reads(*reads):
    """
    Await every read to completion, then raise the first failure in argument
    order. No read is left running or unretrieved when a sibling fails.
    """
    results = await asyncio.gather(*reads, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def _fetch(source: str, call) -> list:
    try:
        rows = await call
    except Exception as e:
        raise UpstreamFetchError(source, str(e)) from e
    return list(rows or [])


async def track_durations(store: EventStore, listen_rows: Sequence[dict]) -> dict:
    """track_id -> duration_ms. Best effort: a failed read leaves minutes unknown."""
    track_ids = sorted({str(row["track_id"]) for row in listen_rows if row.get("track_id")})
    if not track_ids:
        return {}
    try:
        rows = await store.list_track_durations(track_ids)
    except Exception as e:
        logger.warning(
            f"Track durations unavailable: {e}",
            extra={"extra_fields": {"tracks": len(track_ids)}},
        )
        return {}
    return {str(row.get("id")): coerce_number(row.get("duration_ms")) for row in rows or []}


@router.get("")
async def get_timeline(
    current_user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    days: Optional[int] = Query(None, ge=1, le=settings.INSIGHTS_MAX_DAYS, description="Window in days"),
    range_: Optional[str] = Query(None, alias="range", pattern="^today$"),
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = Query(None),
    sort: str = Query("desc", pattern="^(asc|desc)$"),
    types: Optional[str] = Query(None, description="Comma-separated: workout,mood,music"),
    split: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    artist: Optional[str] = Query(None),
):
    """
    Merged activity timeline.

    Returns the resolved window, the included entry types and day blocks of
    `{date, summary, entries}` ordered by `sort`.
    """
    now = datetime.now(timezone.utc)
    since, until = resolve_window(now, days=days, range_=range_, from_=from_, to=to)
    included = parse_types(types)
    ascending = sort == "asc"
    user_id = current_user.id

    workouts = (
        join_sessions(
            store,
            user_id,
            since,
            until=until,
            split=clean_filter(split),
            genre=clean_filter(genre),
            artist=clean_filter(artist),
            ascending=ascending,
        )
        if "workout" in included
        else _nothing()
    )
    mood_rows = _fetch("moods", store.list_moods(user_id, since, until, ascending=ascending)) if "mood" in included else _nothing()
    listen_rows = _fetch("listens", store.list_listens(user_id, since, until, ascending=ascending)) if "music" in included else _nothing()

    sessions, moods, listens = await gather_reads(workouts, mood_rows, listen_rows)
    durations = await track_durations(store, listens)

    logger.debug(
        f"Timeline for user {user_id}",
        extra={"extra_fields": {"workouts": len(sessions), "moods": len(moods), "listens": len(listens)}},
    )

    return {
        "range": {"from": since.isoformat(), "to": until.isoformat()},
        "sort": sort,
        "types": included,
        "days": build_timeline(sessions, moods, listens, durations, sort=sort),
    }
