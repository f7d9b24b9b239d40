from datetime import datetime, timedelta

import pytest
import requests

from replay_pipeline import create_app
from replay_pipeline.context import ServiceContext
from replay_pipeline.models import db as _db

PARSER_URL = "http://parser.test"
PARSE_ENDPOINT = f"{PARSER_URL}/Parse/parse"
PARSER_HEALTH = f"{PARSER_URL}/health"


class ManualClock:
    def __init__(self, start=datetime(2026, 3, 1, 12, 0, 0)):
        self.current = start

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakeResponse:
    def __init__(self, status_code=200, json_body=None, text=None):
        self.status_code = status_code
        self._json = json_body
        self.text = text if text is not None else ("" if json_body is None else str(json_body))

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """
    Stand-in for requests.Session. Each (method, url) route holds a list of
    responses/exceptions consumed in order; the last one repeats.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, *results):
        self.routes[(method, url)] = list(results)

    def _dispatch(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            raise requests.ConnectionError(f"no route for {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def calls_to(self, url):
        return [c for c in self.calls if c[1] == url]

    def close(self):
        pass


class FakeRedis:
    def __init__(self, healthy=True):
        self.healthy = healthy

    def ping(self):
        if not self.healthy:
            raise ConnectionError("redis down")
        return True

    def close(self):
        pass


TELEMETRY = {
    "metadata": {"filename": "match.replay"},
    "players": [{"player_id": "player1", "name": "Player1", "team": 1}],
    "events": [
        {"timestamp": 10.0, "type": "damage_dealt", "data": {"amount": 30, "hp": 100}},
        {"timestamp": 12.0, "type": "damage_taken", "data": {"amount": 60, "hp": 40}},
        {"timestamp": 50.0, "type": "position", "data": {"hp": 40}},
    ],
    "timeline": [
        {"timestamp": 0.0, "player_id": "player1", "position": {"x": 0.0, "y": 0.0, "z": 0.0}},
        {"timestamp": 5.0, "player_id": "player1", "position": {"x": 10.0, "y": 10.0, "z": 0.0}},
        {"timestamp": 9.0, "player_id": "player1", "position": {"x": 10.0, "y": 10.0, "z": 2.0}},
    ],
}


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def http():
    return FakeSession()


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def app(tmp_path, clock, http, fake_redis):
    app = create_app(
        "testing",
        config_overrides={
            "RESULTS_DIR": str(tmp_path / "results"),
            "UPLOAD_DIR": str(tmp_path / "uploads"),
            "PARSER_URL": PARSER_URL,
            "MAX_RETRIES": 2,
        },
        clock=clock,
        redis_client=fake_redis,
        http_session=http,
    )
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    return ServiceContext.of(app)


@pytest.fixture()
def store(ctx):
    return ctx.store


@pytest.fixture()
def replay_file(tmp_path):
    path = tmp_path / "uploads" / "match.replay"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00REPLAY\x01" * 16)
    return str(path)
