import httpx
import pytest

from cookie_relay.cookie_jar import InMemoryCookieJar
from cookie_relay.cors import CORSPolicy
from cookie_relay.relay import RelaySettings
from cookie_relay.utils_tests.upstream_mock import RecordingUpstream, UPSTREAM_HOST


@pytest.fixture
def upstream() -> RecordingUpstream:
    return RecordingUpstream()


@pytest.fixture
def relay_settings() -> RelaySettings:
    return RelaySettings(upstream_host=UPSTREAM_HOST, timeout=5.0)


@pytest.fixture
def jar() -> InMemoryCookieJar:
    return InMemoryCookieJar()


@pytest.fixture
def relay_app(jar, relay_settings, upstream):
    """Relay app wired to the recording upstream instead of the network."""
    from cookie_relay.server import create_app

    return create_app(
        jar=jar,
        settings=relay_settings,
        cors_policy=CORSPolicy(),
        transport=httpx.MockTransport(upstream),
    )


@pytest.fixture
def client(relay_app):
    from fastapi.testclient import TestClient

    with TestClient(relay_app) as test_client:
        yield test_client
