"""SQLModel database engine and session management."""

from sqlmodel import SQLModel, create_engine, Session

import arena.models  # noqa: F401  registers the tables on SQLModel.metadata
from arena.config import settings

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def create_db_and_tables(bind=None):
    """Create all tables. Called on startup; failure here aborts the process."""
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
