"""
Event Store Adapter

Read-only access to the backend's session views and raw logs. Every method is
a coroutine so the pipeline can await store reads and run independent ones
concurrently; the SQL implementation pushes each blocking query onto the
threadpool with its own short-lived ORM session (sessions are not shared
between concurrent reads).

Rows are returned as plain dicts. Nothing here writes.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import bindparam, select, text
from sqlalchemy.orm import Session

from models import (
    listens,
    moods,
    profiles,
    sessions_mood_delta,
    sessions_performance,
    spotify_tracks,
)

Row = Dict[str, Any]

MUSIC_PRE_QUERY = text(
    "SELECT * FROM mv_sessions_music_pre WHERE workout_id IN :ids"
).bindparams(bindparam("ids", expanding=True))


class EventStore(ABC):
    """Query interface consumed by the insights pipeline."""

    @abstractmethod
    async def list_performance_sessions(
        self,
        user_id: str,
        since: datetime,
        until: Optional[datetime] = None,
        split: Optional[str] = None,
        ascending: bool = False,
    ) -> List[Row]:
        """Performance rows for one user, ordered by started_at."""

    @abstractmethod
    async def list_music_context(self, session_ids: Sequence[str]) -> List[Row]:
        """Raw pre-session music rows (arbitrary columns) for the given sessions."""

    @abstractmethod
    async def list_mood_deltas(self, session_ids: Sequence[str]) -> List[Row]:
        """`{workout_id, mood_delta}` rows for the given sessions."""

    @abstractmethod
    async def list_moods(
        self, user_id: str, since: datetime, until: datetime, ascending: bool = False
    ) -> List[Row]:
        """Raw mood log entries in the window."""

    @abstractmethod
    async def list_listens(
        self, user_id: str, since: datetime, until: datetime, ascending: bool = False
    ) -> List[Row]:
        """Listen history entries in the window."""

    @abstractmethod
    async def list_track_durations(self, track_ids: Sequence[str]) -> List[Row]:
        """`{id, duration_ms}` rows for the given tracks."""

    @abstractmethod
    async def get_profile_flags(self, user_id: str) -> Optional[Row]:
        """`{spotify_connected, show_advanced}` for the user, or None."""


class SqlEventStore(EventStore):
    """EventStore backed by SQLAlchemy against the BaaS Postgres views."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _fetch(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        with self._session_factory() as db:
            result = db.execute(statement, params or {})
            return [dict(row) for row in result.mappings()]

    async def _run(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        return await run_in_threadpool(self._fetch, statement, params)

    async def list_performance_sessions(
        self,
        user_id: str,
        since: datetime,
        until: Optional[datetime] = None,
        split: Optional[str] = None,
        ascending: bool = False,
    ) -> List[Row]:
        t = sessions_performance
        query = select(t).where(t.c.user_id == user_id, t.c.started_at >= since)
        if until is not None:
            query = query.where(t.c.started_at <= until)
        if split:
            query = query.where(t.c.split_name == split)
        query = query.order_by(t.c.started_at.asc() if ascending else t.c.started_at.desc())
        return await self._run(query)

    async def list_music_context(self, session_ids: Sequence[str]) -> List[Row]:
        if not session_ids:
            return []
        return await self._run(MUSIC_PRE_QUERY, {"ids": list(session_ids)})

    async def list_mood_deltas(self, session_ids: Sequence[str]) -> List[Row]:
        if not session_ids:
            return []
        t = sessions_mood_delta
        query = select(t.c.workout_id, t.c.mood_delta).where(t.c.workout_id.in_(list(session_ids)))
        return await self._run(query)

    async def list_moods(
        self, user_id: str, since: datetime, until: datetime, ascending: bool = False
    ) -> List[Row]:
        t = moods
        query = (
            select(t)
            .where(t.c.user_id == user_id, t.c.created_at >= since, t.c.created_at <= until)
            .order_by(t.c.created_at.asc() if ascending else t.c.created_at.desc())
        )
        return await self._run(query)

    async def list_listens(
        self, user_id: str, since: datetime, until: datetime, ascending: bool = False
    ) -> List[Row]:
        t = listens
        query = (
            select(t)
            .where(t.c.user_id == user_id, t.c.played_at >= since, t.c.played_at <= until)
            .order_by(t.c.played_at.asc() if ascending else t.c.played_at.desc())
        )
        return await self._run(query)

    async def list_track_durations(self, track_ids: Sequence[str]) -> List[Row]:
        if not track_ids:
            return []
        t = spotify_tracks
        query = select(t.c.id, t.c.duration_ms).where(t.c.id.in_(list(track_ids)))
        return await self._run(query)

    async def get_profile_flags(self, user_id: str) -> Optional[Row]:
        t = profiles
        query = select(t.c.spotify_connected, t.c.show_advanced).where(t.c.id == user_id)
        rows = await self._run(query)
        return rows[0] if rows else None
