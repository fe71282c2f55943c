import pytest

from relay.messaging.router import MessageRouter
from relay.server.app import create_app
from relay.server.settings import RelaySettings
from relay.session.broker import Broker
from relay.tests.mocks import MockConnection


@pytest.fixture
def broker():
    return Broker()


@pytest.fixture
def message_router(broker):
    return MessageRouter(broker)


@pytest.fixture
def mock_connection():
    return MockConnection()


@pytest.fixture
def relay_settings():
    return RelaySettings(reaper_interval_seconds=0.05)


@pytest.fixture
def app(relay_settings, broker, message_router):
    return create_app(settings=relay_settings, broker=broker, message_router=message_router)
