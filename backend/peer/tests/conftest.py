import pytest

from peer.bootstrap.machine import PeerBootstrap
from peer.settings import PeerSettings
from peer.tests.fakes import FakeNetwork


@pytest.fixture
def peer_settings():
    return PeerSettings(
        grace_period_seconds=0.3,
        gathering_timeout_seconds=0.05,
        signaling_timeout_seconds=1.0,
    )


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def make_bootstrap(peer_settings, network):
    def make(settings: PeerSettings | None = None, fake_network: FakeNetwork | None = None) -> PeerBootstrap:
        return PeerBootstrap(settings or peer_settings, transport_factory=(fake_network or network).transport_factory)

    return make


@pytest.fixture
def initiator(make_bootstrap):
    return make_bootstrap()


@pytest.fixture
def responder(make_bootstrap):
    return make_bootstrap()
