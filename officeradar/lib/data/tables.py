from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, Integer, MetaData, String, Table


metadata = MetaData()


presence = Table(
    "presence",
    metadata,
    Column("profile_id", String(128), primary_key=True),
    Column("beacon_id", String(128), primary_key=True),
    Column("last_seen", DateTime, nullable=False),
    Column("last_action", String(16)),
    Column("event_id", String(128)),
    Column("sightings", Integer, nullable=False, default=0),
)

Index("ix_presence_beacon_last_seen", presence.c.beacon_id, presence.c.last_seen)


# bookkeeping lives apart from ``metadata`` so it exists before the first migration runs
migrations_metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    migrations_metadata,
    Column("version", String(64), primary_key=True),
    Column("applied_at", DateTime, nullable=False),
)
