"""Brings the status database to the latest Alembic revision on startup."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect, text

from statuspage.core.database import Base, engine

logger = structlog.get_logger()

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Schema object each revision introduced, oldest first: (revision, table, column or None)
REVISION_MARKERS = (
    ("001", "status_apps", None),
    ("002", "status_uptime_history", None),
    ("003", "status_incidents", "created_by"),
)


@dataclass
class SchemaState:
    revision: str | None = None
    columns: dict[str, set[str]] = field(default_factory=dict)  # table -> column names

    @property
    def tracked(self) -> bool:
        return self.revision is not None


def _alembic_cfg() -> Config:
    cfg = Config(str(_PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    return cfg


def head_revision() -> str:
    return ScriptDirectory.from_config(_alembic_cfg()).get_current_head()


def detect_revision(columns: dict[str, set[str]]) -> str | None:
    """Newest revision whose schema objects, and all earlier ones, are present.

    None means no status tables exist at all.
    """
    detected = None
    for revision, table, column in REVISION_MARKERS:
        if table not in columns or (column is not None and column not in columns[table]):
            break
        detected = revision
    return detected


def _read_schema(connection) -> SchemaState:
    insp = inspect(connection)
    state = SchemaState(
        columns={name: {c["name"] for c in insp.get_columns(name)} for name in insp.get_table_names()}
    )
    if "alembic_version" in state.columns:
        state.revision = connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
    return state


def _stamp(revision: str) -> None:
    command.stamp(_alembic_cfg(), revision)


def _upgrade_head() -> None:
    command.upgrade(_alembic_cfg(), "head")


async def ensure_db_migrated() -> None:
    """Create, adopt or upgrade the schema.

    - empty database: ``create_all`` and stamp head
    - status tables without ``alembic_version``: stamp the revision the
      tables match, then upgrade from there
    - tracked database: upgrade to head
    """
    async with engine.begin() as conn:
        state = await conn.run_sync(_read_schema)
    head = head_revision()

    if state.tracked:
        if state.revision == head:
            logger.info("migrations_up_to_date", revision=head)
            return
        logger.info("migrations_upgrading", current_rev=state.revision, head=head)
        await asyncio.to_thread(_upgrade_head)
        return

    detected = detect_revision(state.columns)
    if detected is None:
        logger.info("migrations_fresh_db", action="create_all_and_stamp", head=head)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_stamp, "head")
        return

    logger.info("migrations_untracked_db", detected_rev=detected, head=head)
    await asyncio.to_thread(_stamp, detected)
    if detected != head:
        await asyncio.to_thread(_upgrade_head)
