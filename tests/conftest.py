"""Shared fixtures: an in-memory ledger per test."""

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from arena.database import create_db_and_tables
from arena.services.position_store import PositionStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def store(engine) -> PositionStore:
    return PositionStore(engine, agent_name="test")
