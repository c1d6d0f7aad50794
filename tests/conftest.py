import copy
import hashlib
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from requests.structures import CaseInsensitiveDict

# Add root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import ConflictError, UpstreamError
from main import app, get_geocoder, get_store
from reports import ReportGateway

FIXED_NOW = datetime(2025, 10, 19, 8, 30, tzinfo=timezone.utc)
STATION = (8.486071, 124.656805)


class FakeStore:
    """In-memory stand-in for RealtimeStore with the same path semantics."""

    def __init__(self, data=None):
        self.data = copy.deepcopy(data or {})
        self.calls = []
        self.failures = {}
        self.before_put = None
        self._counter = 0

    def _check(self, op, path):
        self.calls.append((op, path))
        error = self.failures.get(op) or self.failures.get("*")
        if error is not None:
            raise error

    def _node(self, path):
        node = self.data
        for part in [p for p in path.strip("/").split("/") if p]:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _parent(self, path):
        parts = path.strip("/").split("/")
        node = self.data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        return node, parts[-1]

    def etag(self, path):
        raw = json.dumps(self._node(path), sort_keys=True, default=str)
        return hashlib.md5(raw.encode()).hexdigest()

    def get(self, path, params=None, retry=False):
        self._check("GET", path)
        return copy.deepcopy(self._node(path))

    def tail(self, path, count=1):
        self._check("GET", path)
        node = self._node(path) or {}
        keys = sorted(node)[-count:]
        return {k: copy.deepcopy(node[k]) for k in keys} or None

    def get_with_etag(self, path):
        return self.get(path), self.etag(path)

    def put(self, path, data, if_match=None):
        self._check("PUT", path)
        if self.before_put is not None:
            hook, self.before_put = self.before_put, None
            hook(self)
        if if_match is not None and if_match != self.etag(path):
            raise ConflictError(f"PUT {path} rejected", status=412)
        parent, key = self._parent(path)
        parent[key] = copy.deepcopy(data)
        return data

    def post(self, path, data):
        self._check("POST", path)
        self._counter += 1
        key = f"-Nrep{self._counter:04d}"
        parent, last = self._parent(f"{path}/{key}")
        parent[last] = copy.deepcopy(data)
        return key

    def patch(self, path, data):
        self._check("PATCH", path)
        parent, key = self._parent(path)
        parent.setdefault(key, {}).update(copy.deepcopy(data))
        return data

    def delete(self, path):
        self._check("DELETE", path)
        parent, key = self._parent(path)
        parent.pop(key, None)

    def ping(self):
        self._check("GET", "")
        return True

    def close(self):
        pass


class FakeResponse:
    def __init__(self, status_code=200, body=None, content_type="application/json; charset=utf-8", headers=None):
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)
        self.headers = CaseInsensitiveDict({"content-type": content_type, **(headers or {})})

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Replays canned responses to RealtimeStore and records what was requested."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeGeocoder:
    def __init__(self, result=None, error=None):
        self.result = result or {"display_name": "USTP, Cagayan de Oro", "address": {"city": "Cagayan de Oro"}}
        self.error = error
        self.lookups = []

    def lookup(self, lat, lng, referer=None):
        self.lookups.append((lat, lng, referer))
        if self.error:
            raise self.error
        return self.result


def stored_report(**overrides):
    """A report as the store holds it (external attribute names)."""
    record = {
        "description": "smoke smell",
        "location_area": "Gate 1",
        "latitude": 8.49,
        "longitude": 124.66,
        "report_type": "smoke",
        "timestamp": "2025-10-18T10:00:00.000Z",
        "status": "pending",
        "deployed": False,
    }
    record.update(overrides)
    return record


def make_reading(timestamp, mq135=42.0, classification=1, confidence=0.93, legacy_key=False):
    reading = {
        "timestamp": timestamp,
        "readings": {
            "MQ135_ppm": mq135,
            "MQ2_ppm": 3.1,
            "MQ3_ppm": 0.8,
            "MQ6_ppm": 1.4,
            "MQ9_ppm": 2.2,
        },
        "environment": {"temperature": 29.5, "humidity": 78.0, "env_index": 0.41},
    }
    prediction = {"classification": classification, "confidence": confidence}
    reading["mL_prediction" if legacy_key else "ml_prediction"] = prediction
    return reading


@pytest.fixture
def store():
    return FakeStore({"citizen_reports": {}, "aerovant_readings": {}})


@pytest.fixture
def gateway(store):
    return ReportGateway(store, clock=lambda: FIXED_NOW)


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def client(store, geocoder):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def down():
    return UpstreamError("store unreachable", status=503)
