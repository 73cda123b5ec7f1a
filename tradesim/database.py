"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine, Session

from tradesim.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _run_migrations():
    """Lightweight schema fixes for databases created by older builds."""
    from sqlalchemy import text

    inspector = inspect(engine)

    # Trade listing pages by (run_id, execution_time desc)
    if "trade" in inspector.get_table_names():
        existing_indexes = inspector.get_indexes("trade")
        has_listing_idx = any(
            idx["name"] == "ix_trade_run_id_execution_time" for idx in existing_indexes
        )
        if not has_listing_idx:
            logger.info("Migrating: adding ix_trade_run_id_execution_time")
            with engine.connect() as conn:
                conn.execute(text(
                    "CREATE INDEX ix_trade_run_id_execution_time "
                    "ON trade (run_id, execution_time)"
                ))
                conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import tradesim.models  # noqa: F401  registers tables on the metadata

    SQLModel.metadata.create_all(engine)
    _run_migrations()


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
