import logging
from pathlib import Path
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from adherence_sync.models.tables import Base

log = logging.getLogger(__name__)

def get_engine(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    try:
        return create_engine(url, echo=False, future=True)
    except SQLAlchemyError as e:
        log.error("Failed to create engine: %s", e)
        raise

def create_tables(database_url: str):
    """Create missing ledger tables (idempotent)."""
    engine = get_engine(database_url)
    insp = inspect(engine)
    existing = set(insp.get_table_names())
    expected = set(Base.metadata.tables.keys())

    if expected.issubset(existing):
        log.info("All tables exist. Skipping creation.")
        return engine

    missing = sorted(expected - existing)
    log.info("Creating tables: %s", ", ".join(missing))
    Base.metadata.create_all(engine)
    log.info("Tables created.")
    return engine
