from cookie_relay.relay.headers import (
    build_outbound_headers,
    build_response_headers,
    is_login_request,
    lower_headers,
)

INSTANCE = "instance-1"


def _inbound(**extra):
    headers = {
        "Host": "localhost:3005",
        "Origin": "http://localhost:5174",
        "Referer": "http://localhost:5174/app",
        "Cookie": "browser=secret",
        "Connection": "keep-alive",
        "User-Agent": "Mozilla/5.0",
        "X-Boomtown-Client-Instance-Id": INSTANCE,
        "X-Boomtown-Csrf-Token": "csrf-1",
        "X-Request-Id": "req-1",
        "Accept": "text/html",
    }
    headers.update(extra)
    return headers


class TestBuildOutboundHeaders:
    def test_allow_listed_headers_pass_through(self):
        result = build_outbound_headers(_inbound(), INSTANCE, login=True)

        assert result["x-boomtown-client-instance-id"] == INSTANCE
        assert result["x-boomtown-csrf-token"] == "csrf-1"
        assert result["x-request-id"] == "req-1"
        assert result["accept"] == "text/html"

    def test_origin_identifying_and_other_headers_removed(self):
        result = build_outbound_headers(_inbound(), INSTANCE)

        for name in ("host", "origin", "referer", "connection", "user-agent"):
            assert name not in result

    def test_browser_cookie_never_forwarded(self):
        result = build_outbound_headers(_inbound(), INSTANCE)
        assert "cookie" not in result

    def test_stored_relay_cookie_injected_exactly(self):
        result = build_outbound_headers(_inbound(), INSTANCE, "relay=abc123")
        assert result["cookie"] == "relay=abc123"

    def test_requested_with_defaults_to_xhr(self):
        result = build_outbound_headers(_inbound(), INSTANCE)
        assert result["x-requested-with"] == "XMLHttpRequest"

        inbound = _inbound(**{"X-Requested-With": "fetch"})
        assert build_outbound_headers(inbound, INSTANCE)["x-requested-with"] == "fetch"

    def test_simple_non_login_request_forced_to_json(self):
        result = build_outbound_headers(
            _inbound(), INSTANCE, body_kind="json", content_type="text/plain"
        )
        assert result["accept"] == "application/json"
        assert result["content-type"] == "application/json"

    def test_empty_body_non_login_forced_to_json(self):
        result = build_outbound_headers(_inbound(), INSTANCE, body_kind="empty")
        assert result["content-type"] == "application/json"

    def test_multipart_keeps_body_content_type(self):
        content_type = "multipart/form-data; boundary=xyz"
        result = build_outbound_headers(
            _inbound(), INSTANCE, body_kind="multipart", content_type=content_type
        )
        assert result["content-type"] == content_type
        assert result["accept"] == "text/html"

    def test_login_request_keeps_form_content_type(self):
        result = build_outbound_headers(
            _inbound(),
            INSTANCE,
            login=True,
            body_kind="form",
            content_type="application/x-www-form-urlencoded",
        )
        assert result["content-type"] == "application/x-www-form-urlencoded"
        assert result["accept"] == "text/html"

    def test_extra_forward_headers(self):
        inbound = _inbound(**{"Time-Zone": "America/Los_Angeles", "Origin": "x"})
        result = build_outbound_headers(
            inbound, INSTANCE, extra_headers=["time-zone", "origin", "cookie"]
        )
        assert result["time-zone"] == "America/Los_Angeles"
        assert "origin" not in result
        assert "cookie" not in result

    def test_input_is_not_mutated(self):
        inbound = _inbound()
        before = dict(inbound)
        build_outbound_headers(inbound, INSTANCE, "relay=abc")
        assert inbound == before

    def test_instance_id_argument_wins(self):
        inbound = _inbound(**{"x-boomtown-client-instance-id": "other"})
        result = build_outbound_headers(inbound, INSTANCE)
        assert result["x-boomtown-client-instance-id"] == INSTANCE


class TestLowerHeaders:
    def test_last_duplicate_wins(self):
        assert lower_headers({"Accept": "a", "accept": "b"}) == {"accept": "b"}


class TestIsLoginRequest:
    def test_login_path(self):
        assert is_login_request("https://up.test/api/v3/login?x=1")
        assert is_login_request("https://up.test/Auth/LOGIN")

    def test_non_login_path(self):
        assert not is_login_request("https://up.test/api/v3/issues")

    def test_query_is_not_considered(self):
        assert not is_login_request("https://up.test/api/v3/issues?next=/login")

    def test_custom_markers(self):
        assert is_login_request("https://up.test/session/start", ["session/start"])


class TestBuildResponseHeaders:
    def test_content_length_and_transfer_encoding_dropped(self):
        result = build_response_headers(
            [
                ("Content-Type", "application/json"),
                ("Content-Length", "12"),
                ("Transfer-Encoding", "chunked"),
                ("X-Custom", "1"),
            ]
        )
        assert result == [("Content-Type", "application/json"), ("X-Custom", "1")]

    def test_repeated_set_cookie_kept(self):
        result = build_response_headers(
            [("set-cookie", "relay=a; Path=/"), ("set-cookie", "other=b")]
        )
        assert result == [("set-cookie", "relay=a; Path=/"), ("set-cookie", "other=b")]
