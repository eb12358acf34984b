"""
Threaded tests need a database every connection can see, so the shared
in-memory engine is replaced by a SQLite file unless DATABASE_URL is set.
"""

import os

import pytest

from billing_modules._orm_registry import (
    create_all_tables,
    drop_all_tables,
    register_all_listeners,
)
from ledger_kernel.db.engine import build_engine


@pytest.fixture
def engine(tmp_path):
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'billing.db'}"
    engine = build_engine(url)
    drop_all_tables(engine)
    create_all_tables(engine)
    register_all_listeners()
    yield engine
    drop_all_tables(engine)
    engine.dispose()
