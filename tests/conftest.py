"""Shared fixtures: an in-memory SQLite database holding a small forest.

Forest used throughout the suite::

    1             10
    ├── 2         └── 11
    │   └── 4         └── 12
    └── 3                 └── 13
"""
import os

# Keep the application module away from any real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_DATABASE", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False)
    with SessionTesting() as session:
        yield session


@pytest.fixture
def tree(session):
    """Insert the forest and return the nodes keyed by id."""
    nodes = [
        models.Node(id=1, label="root", parent_id=None),
        models.Node(id=2, label="a", parent_id=1),
        models.Node(id=3, label="b", parent_id=1),
        models.Node(id=4, label="a-1", parent_id=2),
        models.Node(id=10, label="chain", parent_id=None),
        models.Node(id=11, label="chain-1", parent_id=10),
        models.Node(id=12, label="chain-2", parent_id=11, meta={"tag": "deep"}),
        models.Node(id=13, label="chain-3", parent_id=12),
    ]
    session.add_all(nodes)
    session.commit()
    return {node.id: node for node in nodes}
