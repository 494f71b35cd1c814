"""
Shared fixtures: temporary SQLite databases, a scripted remote gateway and
an injectable clock for lock and cursor tests.
"""

import copy
import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from ordersync.db_setup import init_database
from ordersync.local import SqlLocalSystem
from ordersync.state import StateStore


FIXTURES_PATH = Path(__file__).parent / "fixtures" / "remote_orders.json"
with open(FIXTURES_PATH) as f:
    FIXTURES = json.load(f)


def fixture_data(name):
    return copy.deepcopy(FIXTURES[name])


class FakeGateway:
    """
    Stands in for RemoteGateway.api().

    ``responses`` maps an endpoint path to a value, an exception instance
    (raised) or a callable taking the request params.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def api(self, path, method="POST", params=None):
        self.calls.append((path, method, copy.deepcopy(params)))
        value = self.responses.get(path)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(params)
        return copy.deepcopy(value)

    def calls_to(self, path):
        return [call for call in self.calls if call[0] == path]


class FakeClock:
    """Clock whose sleep() advances time instead of blocking."""

    def __init__(self, start=datetime(2024, 3, 2, 12, 0, 0)):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def session_factory(tmp_path):
    return init_database(str(tmp_path / "ordersync.db"))


@pytest.fixture
def state(session_factory):
    return StateStore(session_factory)


@pytest.fixture
def local(session_factory):
    return SqlLocalSystem(session_factory)


@pytest.fixture
def clock():
    return FakeClock()
