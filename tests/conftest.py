"""
Shared fixtures for the TutorQuest test suite
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
import pytz

from services.progress_ledger import ProgressLedger, new_progress_record
from services.progress_store import MemoryProgressStore
from utils.config import Config

class SteppingClock:
    """Clock that moves forward one second on every call"""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        moment = self.current
        self.current = self.current + timedelta(seconds=1)
        return moment

@pytest.fixture
def start_time():
    return datetime(2024, 3, 1, 9, 0, 0, tzinfo=pytz.utc)

@pytest.fixture
def clock(start_time):
    return SteppingClock(start_time)

@pytest.fixture
def memory_store():
    return MemoryProgressStore()

@pytest.fixture
def ledger(memory_store, clock):
    return ProgressLedger(memory_store, clock=clock)

@pytest.fixture
def test_config():
    return Config({'PROGRESS_STORE': 'memory', 'ENVIRONMENT': 'test'})

@pytest.fixture
def seed_record(memory_store, start_time):
    """Store a progress record with the given overrides and return it"""
    def _seed(learner_id='learner-1', **fields):
        record = new_progress_record(learner_id, start_time)
        record.update(fields)
        memory_store.save_progress(record)
        return record
    return _seed

@pytest.fixture
def mock_firestore():
    """Mock Firestore client with one mock per collection"""
    mock_db = Mock()
    collections = {}

    def collection(name):
        return collections.setdefault(name, Mock(name=f"collection:{name}"))

    mock_db.collection.side_effect = collection
    mock_db.collections = collections
    return mock_db

@pytest.fixture
def sample_progress_data(start_time):
    """Sample progress document as Firestore would return it"""
    return {
        'learner_id': 'test-learner',
        'xp': 120,
        'level': 2,
        'streak': 2,
        'longest_streak': 4,
        'last_active_date': '2024-02-29',
        'badges': ['first_steps', 'streak_starter'],
        'sessions_completed': 1,
        'quizzes_completed': 0,
        'goals_completed': 0,
        'total_study_hours': 1,
        'created_at': start_time,
        'updated_at': start_time,
    }

@pytest.fixture
def client(test_config, memory_store):
    """Test client for Flask app backed by the in-memory store"""
    from main import create_app

    app = create_app(test_config, store=memory_store)
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
