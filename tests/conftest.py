import asyncio

import pytest

from oralparticipation.data import Database
from oralparticipation.tracker import Tracker

TEST_CONFIG = {
    'db_path': None,
    'grade_snapshot_days': 30,
    'history_days': 30,
    'default_reminder_frequency': 7,
}


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db(tmp_path):
    db = Database(str(tmp_path / 'test.db'))
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def tracker(db):
    # ohne Standard-Fächer, damit die Tests ihre Daten selbst bestimmen
    return run(Tracker(db, config=dict(TEST_CONFIG)).ready(with_defaults=False))
