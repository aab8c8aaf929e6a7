import pytest

from escaperoom import create_app
from escaperoom.game.core import ManualClock

# aligned to a 60s window boundary
T0 = 28_333_334 * 60_000


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def app(clock):
    return create_app("testing", clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()
