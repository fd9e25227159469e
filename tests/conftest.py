import os
import tempfile
from datetime import datetime

import pytest

# Keep the module-level store out of the working directory
os.environ.setdefault('FORTUNE_WHEEL_DATA_DIR', tempfile.mkdtemp(prefix='fortune-wheel-'))

import app as wheel_app  # noqa: E402
from spin_engine import GameConfiguration  # noqa: E402
from storage import CONFIG_FILE, USERS_FILE, JsonDocumentStore  # noqa: E402

NOW = datetime(2024, 6, 1, 15, 30, 45)


class StubRandom:
    """Deterministic stand-in for random.Random: queued floats, first element on choice"""

    def __init__(self, *floats):
        self.floats = list(floats)

    def random(self):
        return self.floats.pop(0) if self.floats else 0.0

    def choice(self, seq):
        return seq[0]

    def randrange(self, stop):
        return 0


class ExplodingRandom:
    """Fails the test if any random draw is made"""

    def random(self):
        raise AssertionError("random() must not be called")

    def choice(self, seq):
        raise AssertionError("choice() must not be called")

    def randrange(self, stop):
        raise AssertionError("randrange() must not be called")


def config_document(winning=3, losing=5, max_plays=1, max_wins=1, probability=100, active=True):
    prizes = [{'label': f'Prize {i}', 'is_winning': True, 'value': 10 + i} for i in range(winning)]
    prizes += [{'label': f'Try again {i}', 'is_winning': False, 'value': 0} for i in range(losing)]
    return {
        'wheel_name': 'Test Wheel',
        'max_plays_per_user_per_day': max_plays,
        'max_global_wins_per_day': max_wins,
        'win_probability_percent': probability,
        'active': active,
        'prizes': prizes,
    }


def make_config(**kwargs):
    return GameConfiguration.from_document(config_document(**kwargs))


@pytest.fixture
def store(tmp_path, monkeypatch):
    data_store = JsonDocumentStore(str(tmp_path / 'data'))
    data_store.save(CONFIG_FILE, config_document())
    data_store.save(USERS_FILE, [
        {'user': 'admin', 'password': 'secret', 'role': 'admin'},
        {'user': 'alice', 'password': 'alice-pw', 'role': 'user'},
        {'user': 'bob', 'password': 'bob-pw', 'role': 'user'},
    ])
    monkeypatch.setattr(wheel_app, 'store', data_store)
    monkeypatch.setattr(wheel_app, 'clock', lambda: NOW)
    monkeypatch.setattr(wheel_app, 'rng', StubRandom())
    monkeypatch.setattr(wheel_app, 'wheel_state', wheel_app.WheelState())
    return data_store


@pytest.fixture
def client(store):
    wheel_app.app.config.update(TESTING=True)
    with wheel_app.app.test_client() as test_client:
        yield test_client


@pytest.fixture
def login(client):
    def _login(username, password):
        response = client.post('/api/login', json={'username': username, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response
    return _login
