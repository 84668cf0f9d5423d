# tests/conftest.py
import os
import tempfile
import uuid
from datetime import datetime

import pytest

from categorizer.service import CategorizerService
from config.loader import EngineConfig
from sce_core.models import CategoryRule, TrainingExample
from storage.sqlite_store import SQLiteStore

NOON = datetime(2024, 3, 15, 12, 30)


@pytest.fixture
def temp_db():
    """Create a temporary database file."""
    fd, path = tempfile.mkstemp(suffix=".sqlite")
    os.close(fd)
    os.unlink(path)  # let sqlite create it so the store sees a fresh db
    yield path
    try:
        os.unlink(path)
    except (FileNotFoundError, PermissionError):
        pass


@pytest.fixture
def store(temp_db):
    """A SQLiteStore with schema and seed data."""
    with SQLiteStore(temp_db) as s:
        s.ensure_schema(EngineConfig().seed_rules)
        yield s


@pytest.fixture
def cfg():
    return EngineConfig()


@pytest.fixture
def mem_service(cfg):
    """In-memory service seeded from the default YAML."""
    return CategorizerService(store=None, cfg=cfg)


@pytest.fixture
def empty_service():
    """In-memory service with no seed rules or merchants."""
    return CategorizerService(store=None, cfg=EngineConfig(seed_rules=""))


def make_example(
    description,
    category_id="food",
    amount=100.0,
    merchant="",
    is_correct=True,
    timestamp=NOON,
):
    return TrainingExample(
        id=str(uuid.uuid4()),
        description=description,
        amount=amount,
        merchant=merchant,
        category_id=category_id,
        is_correct=is_correct,
        user_id="u1",
        timestamp=timestamp,
    )


def make_rule(**kw):
    defaults = dict(
        id=str(uuid.uuid4()),
        name="test rule",
        category_id="food",
        created_at=NOON,
    )
    defaults.update(kw)
    return CategoryRule(**defaults)


@pytest.fixture
def example_factory():
    return make_example


@pytest.fixture
def rule_factory():
    return make_rule
