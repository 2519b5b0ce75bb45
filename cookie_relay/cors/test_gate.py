from unittest.mock import Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from cookie_relay.cors import (
    ALLOWED_METHODS,
    CORSPolicy,
    FIXED_ORIGIN_ALLOWLIST,
    REFLECT_ORIGIN,
)
from cookie_relay.relay import RelaySettings
from cookie_relay.server import create_app
from cookie_relay.utils_tests.upstream_mock import INSTANCE_ID, UPSTREAM_HOST

ORIGIN = "http://localhost:5174"
PROXY_URL = f"/proxy?url=https://{UPSTREAM_HOST}/api/v3/issues"
HEADERS = {"x-boomtown-client-instance-id": INSTANCE_ID}


@pytest.fixture
def spy_jar():
    jar = Mock()
    jar.get.return_value = None
    jar.set.return_value = None
    return jar


def _client(policy: CORSPolicy, upstream, jar) -> TestClient:
    app = create_app(
        jar=jar,
        settings=RelaySettings(upstream_host=UPSTREAM_HOST),
        cors_policy=policy,
        transport=httpx.MockTransport(upstream),
    )
    return TestClient(app)


class TestCORSPolicy:
    def test_reflect_echoes_any_origin(self):
        policy = CORSPolicy(REFLECT_ORIGIN)
        headers = policy.headers_for("https://anything.example")

        assert headers["Access-Control-Allow-Origin"] == "https://anything.example"
        assert headers["Access-Control-Allow-Credentials"] == "true"

    def test_no_origin_no_allow_origin(self):
        headers = CORSPolicy(REFLECT_ORIGIN).headers_for(None)

        assert "Access-Control-Allow-Origin" not in headers
        assert "Access-Control-Allow-Credentials" not in headers
        assert headers["Access-Control-Allow-Methods"] == ", ".join(ALLOWED_METHODS)

    def test_fixed_origin_allows_only_configured(self):
        policy = CORSPolicy(FIXED_ORIGIN_ALLOWLIST, allowed_origin=ORIGIN)

        assert policy.allow_origin(ORIGIN) == ORIGIN
        assert policy.allow_origin("http://localhost:3000") is None
        assert "Access-Control-Allow-Origin" not in policy.headers_for(
            "http://localhost:3000"
        )

    def test_allowed_headers_include_protocol_headers(self):
        allow_headers = CORSPolicy().headers_for(ORIGIN)["Access-Control-Allow-Headers"]

        for name in (
            "x-boomtown-client-instance-id",
            "x-boomtown-csrf-token",
            "x-request-id",
            "Authorization",
        ):
            assert name in allow_headers

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError, match="Unknown CORS mode"):
            CORSPolicy("allow-all")

    def test_fixed_mode_requires_origin(self):
        with pytest.raises(ValueError):
            CORSPolicy(FIXED_ORIGIN_ALLOWLIST)


class TestCORSGateMiddleware:
    def test_options_short_circuits(self, upstream, spy_jar):
        with _client(CORSPolicy(), upstream, spy_jar) as client:
            r = client.options(
                PROXY_URL,
                headers={"origin": ORIGIN, "access-control-request-method": "POST"},
            )

        assert r.status_code == 200
        assert r.content == b""
        assert r.headers["access-control-allow-origin"] == ORIGIN
        assert r.headers["access-control-allow-credentials"] == "true"
        assert r.headers["vary"] == "Origin"
        assert upstream.calls == 0
        spy_jar.get.assert_not_called()
        spy_jar.set.assert_not_called()

    def test_options_without_instance_id_is_still_200(self, upstream, spy_jar):
        with _client(CORSPolicy(), upstream, spy_jar) as client:
            r = client.options("/api/anything")

        assert r.status_code == 200
        assert upstream.calls == 0

    def test_relayed_response_gets_cors_headers(self, upstream, spy_jar):
        upstream.reply_with(
            lambda request: httpx.Response(
                200,
                headers={
                    "access-control-allow-origin": "*",
                    "vary": "Accept-Encoding",
                },
                content=b"ok",
            )
        )
        with _client(CORSPolicy(), upstream, spy_jar) as client:
            r = client.get(PROXY_URL, headers={**HEADERS, "origin": ORIGIN})

        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == ORIGIN
        assert r.headers["vary"] == "Accept-Encoding, Origin"

    def test_client_errors_carry_cors_headers(self, upstream, spy_jar):
        with _client(CORSPolicy(), upstream, spy_jar) as client:
            r = client.get(PROXY_URL, headers={"origin": ORIGIN})

        assert r.status_code == 400
        assert r.headers["access-control-allow-origin"] == ORIGIN

    def test_fixed_origin_refuses_other_origins(self, upstream, spy_jar):
        policy = CORSPolicy(FIXED_ORIGIN_ALLOWLIST, allowed_origin=ORIGIN)
        with _client(policy, upstream, spy_jar) as client:
            allowed = client.get(PROXY_URL, headers={**HEADERS, "origin": ORIGIN})
            refused = client.get(
                PROXY_URL, headers={**HEADERS, "origin": "http://evil.example"}
            )

        assert allowed.headers["access-control-allow-origin"] == ORIGIN
        assert "access-control-allow-origin" not in refused.headers
        assert "access-control-allow-credentials" not in refused.headers
