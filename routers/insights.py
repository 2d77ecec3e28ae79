"""
Insights API Router

Endpoints behind the insights screen. Each request joins the user's sessions
for the requested window, scores them against that (filtered) cohort and
composes one view:

- /summary   headline, boosters/drainers per genre and artist, energy and BPM
             band rankings, music effects
- /digest    weekly digest (tone, chips, best slots, pairings, state flags)
- /timeline  joined sessions grouped by day
- /soundmap  (label or bpm band) x energy band grid

Nothing is cached between requests.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.auth import CurrentUser, get_current_user
from core.config import settings
from core.database import get_event_store
from services.event_store import EventStore
from services.insight_digest import DigestFilters, compose_summary, compose_weekly_digest
from services.insight_scoring import score_sessions
from services.session_join import clean_filter, join_sessions
from services.soundmap import build_soundmap
from services.timeline_digest import group_sessions_by_day

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/insights", tags=["insights"])


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


async def music_connected(store: EventStore, user_id: str) -> bool:
    """Profile flag lookup; a failed read only hides the playlist action."""
    try:
        profile = await store.get_profile_flags(user_id)
    except Exception as e:
        logger.warning(
            f"Profile flags unavailable: {e}",
            extra={"extra_fields": {"user_id": user_id}},
        )
        return False
    return bool(profile and profile.get("spotify_connected"))


@router.get("/summary")
async def get_insights_summary(
    current_user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    days: int = Query(settings.INSIGHTS_DEFAULT_DAYS, ge=1, le=settings.INSIGHTS_MAX_DAYS, description="Window in days"),
    split: Optional[str] = Query(None, description="Workout split label"),
    genre: Optional[str] = Query(None, description="Dominant pre-session genre"),
    artist: Optional[str] = Query(None, description="Dominant pre-session artist"),
):
    """
    Insights summary for the window.

    Returns headline score/best time/recipe/copy, genre and artist boosters
    and drainers, energy and BPM bands ranked by impact, the
    music-to-performance and music-to-mood effects and a play link for the top
    booster genres.
    """
    filters = DigestFilters(days=days, split=clean_filter(split), genre=clean_filter(genre), artist=clean_filter(artist))
    sessions = await join_sessions(
        store,
        current_user.id,
        window_start(days),
        split=filters.split,
        genre=filters.genre,
        artist=filters.artist,
    )
    return compose_summary(score_sessions(sessions), filters)


@router.get("/digest")
async def get_weekly_digest(
    current_user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
):
    """Weekly digest over the default window (tone compares the last two weeks)."""
    sessions = await join_sessions(store, current_user.id, window_start(settings.INSIGHTS_DEFAULT_DAYS))
    connected = await music_connected(store, current_user.id)
    return compose_weekly_digest(score_sessions(sessions), music_connected=connected)


@router.get("/timeline")
async def get_insights_timeline(
    current_user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    days: int = Query(settings.INSIGHTS_DEFAULT_DAYS, ge=1, le=settings.INSIGHTS_MAX_DAYS),
    split: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    artist: Optional[str] = Query(None),
):
    sessions = await join_sessions(
        store,
        current_user.id,
        window_start(days),
        split=clean_filter(split),
        genre=clean_filter(genre),
        artist=clean_filter(artist),
    )
    return {
        "days": days,
        "sample": len(sessions),
        "timeline": group_sessions_by_day(sessions),
    }


@router.get("/soundmap")
async def get_soundmap(
    current_user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    days: int = Query(settings.INSIGHTS_DEFAULT_DAYS, ge=1, le=settings.INSIGHTS_MAX_DAYS),
    mode: str = Query("genre", pattern="^(genre|artist|bpm)$"),
    split: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    artist: Optional[str] = Query(None),
):
    """
    Sound map cells for the window.

    mode=genre|artist rows by dominant label, mode=bpm rows by BPM band;
    columns are pre-session energy bands.
    """
    sessions = await join_sessions(
        store,
        current_user.id,
        window_start(days),
        split=clean_filter(split),
        genre=clean_filter(genre),
        artist=clean_filter(artist),
    )
    return {
        "mode": mode,
        "days": days,
        "sample": len(sessions),
        "cells": build_soundmap(sessions, mode),
    }
