from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from sqlalchemy import Engine, create_engine, event, insert, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, sessionmaker

from ..config import DatabaseConfig
from .tables import metadata, migrations_metadata, schema_migrations


logger = logging.getLogger("officeradar.data.db")

UpgradeStep = Callable[[Connection], None]


@dataclass(frozen=True)
class SchemaStep:
    version: str
    upgrade: UpgradeStep


_STEPS: Dict[str, SchemaStep] = {}
_ENGINE: Optional[Engine] = None
_SESSION_FACTORY: Optional[sessionmaker] = None


def register_migration(version: str, upgrade: UpgradeStep) -> None:
    """Register a schema step; steps run once each, ordered by version."""
    if version in _STEPS:
        raise ValueError(f"Migration '{version}' already registered")
    _STEPS[version] = SchemaStep(version, upgrade)


def _presence_database_url(config: DatabaseConfig) -> str:
    if (config.engine or "sqlite").lower() != "sqlite":
        raise ValueError(f"Unsupported presence database engine '{config.engine}'")
    if config.name == ":memory:":
        return "sqlite://"
    directory = Path(config.path)
    directory.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{directory / config.name}"


def _on_sqlite_connect(dbapi_connection, _connection_record) -> None:  # type: ignore[override]
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    # the follower writes while alert evaluation reads
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def run_migrations(engine: Engine) -> int:
    """Apply outstanding schema steps; returns how many were applied."""
    applied_now = 0
    with engine.begin() as connection:
        migrations_metadata.create_all(connection)
        done = set(connection.execute(select(schema_migrations.c.version)).scalars())
        for version in sorted(_STEPS):
            if version in done:
                continue
            _STEPS[version].upgrade(connection)
            connection.execute(
                insert(schema_migrations).values(
                    version=version,
                    applied_at=datetime.now(timezone.utc).replace(tzinfo=None),
                )
            )
            logger.info("Applied presence schema step %s", version)
            applied_now += 1
    return applied_now


def initialize_database(config: DatabaseConfig, *, echo: bool = False) -> Engine:
    """
    Open the presence database, bring its schema up to date and prepare the
    session factory. Repeated calls return the engine already open.
    """
    global _ENGINE, _SESSION_FACTORY

    if _ENGINE is not None:
        return _ENGINE

    engine = create_engine(
        _presence_database_url(config),
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _on_sqlite_connect)
    run_migrations(engine)

    _SESSION_FACTORY = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    _ENGINE = engine
    return engine


def get_session() -> Session:
    if _SESSION_FACTORY is None:
        raise RuntimeError("Presence database is not initialized")
    return _SESSION_FACTORY()


def dispose_database() -> None:
    global _ENGINE, _SESSION_FACTORY

    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None


def _create_presence_table(connection: Connection) -> None:
    metadata.create_all(connection)


register_migration("0001_presence", _create_presence_table)
