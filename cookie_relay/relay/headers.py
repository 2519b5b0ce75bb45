"""
Outbound request and inbound response header rewriting for the relay.

Both directions are pure functions: they take a mapping and return a new dict,
leaving the input untouched.
"""

from typing import Iterable, Mapping, Optional
from urllib.parse import urlparse

from cookie_relay.vars import (
    INSTANCE_ID_HEADER,
    RELAY_FORWARD_HEADERS,
    RELAY_LOGIN_PATH_MARKERS,
)

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that would identify the browser's origin to the upstream
ORIGIN_HEADERS = {"origin", "referer", "host"}

# Headers the upstream protocol needs from the browser
PASS_THROUGH_HEADERS = (
    INSTANCE_ID_HEADER,
    "x-boomtown-csrf-token",
    "x-request-id",
    "x-requested-with",
    "accept",
)

# Recomputed by the transport for the client leg
RESPONSE_SKIP_HEADERS = {"content-length", "transfer-encoding"}

JSON_MEDIA_TYPE = "application/json"
SIMPLE_BODY_KINDS = {"empty", "json"}


def lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Lower-case header names; on duplicate names the last one wins."""
    return {name.lower(): value for name, value in headers.items()}


def is_login_request(
    target_url: str, markers: Iterable[str] = RELAY_LOGIN_PATH_MARKERS
) -> bool:
    path = urlparse(target_url).path.lower()
    return any(marker in path for marker in markers)


def build_outbound_headers(
    inbound: Mapping[str, str],
    instance_id: str,
    relay_cookie: Optional[str] = None,
    *,
    login: bool = False,
    body_kind: str = "empty",
    content_type: Optional[str] = None,
    extra_headers: Iterable[str] = RELAY_FORWARD_HEADERS,
) -> dict[str, str]:
    """
    Build the headers for the upstream leg of a relayed request.

    Only allow-listed headers survive. The browser's cookies are never
    forwarded; the stored relay cookie for this instance is sent instead.
    Simple non-login calls are pinned to JSON so the upstream's content
    negotiation behaves the same for every client.
    """
    source = lower_headers(inbound)
    allowed = set(PASS_THROUGH_HEADERS) | {h.lower() for h in extra_headers}

    headers = {name: value for name, value in source.items() if name in allowed}
    headers[INSTANCE_ID_HEADER] = instance_id
    headers.setdefault("x-requested-with", "XMLHttpRequest")

    for name in ORIGIN_HEADERS | HOP_BY_HOP_HEADERS:
        headers.pop(name, None)

    headers.pop("cookie", None)
    if relay_cookie:
        headers["cookie"] = relay_cookie

    if not login and body_kind in SIMPLE_BODY_KINDS:
        headers["accept"] = JSON_MEDIA_TYPE
        headers["content-type"] = JSON_MEDIA_TYPE
    elif content_type:
        headers["content-type"] = content_type

    return headers


def build_response_headers(
    upstream_headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """
    Copy upstream response headers for the client, keeping repeated entries
    such as multiple Set-Cookie lines.
    """
    return [
        (name, value)
        for name, value in upstream_headers
        if name.lower() not in RESPONSE_SKIP_HEADERS
    ]
