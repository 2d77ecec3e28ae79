"""
Read-only mappings of the BaaS views consumed by the insights pipeline.

These relations are owned and refreshed by the backend (materialized views and
plain tables maintained by the app and the enrichment jobs). They are declared
here as SQLAlchemy Core tables so queries are composed, not string-built.
`mv_sessions_music_pre` is deliberately absent: its column set drifts with the
enrichment jobs and is read with `SELECT *` (see services/event_store.py).
"""
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, MetaData, Table, Text

metadata = MetaData()


sessions_performance = Table(
    "mv_sessions_performance",
    metadata,
    Column("workout_id", Text, primary_key=True),
    Column("user_id", Text, nullable=False, index=True),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("split_name", Text),
    Column("tonnage", Float),
    Column("sets_count", Integer),
    Column("tonnage_z", Float),
)

# mood_delta is numeric in Postgres but arrives as text through some
# refresh paths, so it is mapped loosely and coerced by the joiner.
sessions_mood_delta = Table(
    "mv_sessions_mood_delta",
    metadata,
    Column("workout_id", Text, primary_key=True),
    Column("mood_delta", Text),
)

moods = Table(
    "moods",
    metadata,
    Column("id", Text, primary_key=True),
    Column("user_id", Text, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("score", Float),
    Column("post_workout", Boolean),
    Column("energy", Float),
    Column("stress", Float),
    Column("contexts", Text),
)

listens = Table(
    "v_spotify_listens_expanded",
    metadata,
    Column("id", Text, primary_key=True),
    Column("user_id", Text, nullable=False, index=True),
    Column("played_at", DateTime(timezone=True), nullable=False),
    Column("track_id", Text, nullable=False),
    Column("track_name", Text),
    Column("artist_name", Text),
    Column("album_image_url", Text),
)

spotify_tracks = Table(
    "spotify_tracks",
    metadata,
    Column("id", Text, primary_key=True),
    Column("duration_ms", Integer),
)

profiles = Table(
    "profiles",
    metadata,
    Column("id", Text, primary_key=True),
    Column("spotify_connected", Boolean),
    Column("show_advanced", Boolean),
)
