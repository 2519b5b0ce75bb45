import logging
from enum import Enum
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, Mapping, Optional
from urllib.parse import quote, urlsplit

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from cookie_relay.cookie_jar import CookieJarBase
from cookie_relay.errors import (
    RelayClientError,
    RelayError,
    RequestBodyTooLarge,
    UpstreamNetworkError,
)
from cookie_relay.relay.body import describe_body, forward_body
from cookie_relay.relay.headers import (
    build_outbound_headers,
    build_response_headers,
    is_login_request,
)
from cookie_relay.relay.settings import RelaySettings
from cookie_relay.utils import mask_token
from cookie_relay.utils.exception_logging import (
    find_exception_in_exception_groups,
    format_exception_message,
    log_exception_with_details,
)
from cookie_relay.utils.traced_requests import traced_request
from cookie_relay.vars import INSTANCE_ID_HEADER

# Characters left unescaped when re-encoding a decoded path segment
PATH_SAFE_CHARS = "/:@!$&'()*+,;=~"

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


class RelayState(str, Enum):
    RECEIVED = "Received"
    HEADERS_BUILT = "HeadersBuilt"
    FORWARDING = "Forwarding"
    RESPONSE_RECEIVED = "ResponseReceived"
    COOKIE_UPDATED = "CookieUpdated"
    RESPONSE_WRITTEN = "ResponseWritten"
    ERRORED = "Errored"


class RelayExchange:
    """Tracks where a single relayed request is in its lifecycle."""

    def __init__(self, method: str, target_url: Optional[str]):
        self.method = method
        self.target_url = target_url
        self.state = RelayState.RECEIVED

    def advance(self, state: RelayState) -> None:
        if self.state in (RelayState.RESPONSE_WRITTEN, RelayState.ERRORED):
            raise RuntimeError(
                f"Exchange already finished in state {self.state.value}"
            )
        logger.debug(
            f"[Relay] {self.method} {self.target_url}: "
            f"{self.state.value} -> {state.value}"
        )
        self.state = state


def no_cookie_store() -> CookieJar:
    """A jar that refuses every cookie, so the shared client never carries
    upstream cookies from one client instance into another's request."""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def build_upstream_client(
    settings: RelaySettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout),
        follow_redirects=False,
        cookies=no_cookie_store(),
        transport=transport,
    )


def cookie_domain(target_url: str) -> str:
    netloc = urlsplit(target_url).netloc
    return netloc.rsplit("@", 1)[-1].lower()


async def _body_chunks(upstream: httpx.Response) -> AsyncIterator[bytes]:
    if upstream.is_stream_consumed:
        # Response(content=...) objects are read on construction
        yield upstream.content
        return
    async for chunk in upstream.aiter_raw():
        yield chunk


class RelayHandler:
    """
    Relays one inbound request to the upstream and the answer back.

    The only state shared between requests is the cookie jar; the upstream
    client is shared for connection pooling but stores no cookies.
    """

    def __init__(
        self,
        jar: CookieJarBase,
        client: httpx.AsyncClient,
        settings: Optional[RelaySettings] = None,
    ):
        self.jar = jar
        self.client = client
        self.settings = settings or RelaySettings.from_env()

    def encoded_subpath(self, raw_path: Optional[bytes], path: str) -> str:
        """
        The part of the inbound path after the api prefix, still percent-encoded.

        Prefers the undecoded ``raw_path`` from the ASGI scope so escapes such
        as ``%3F``, ``%23`` and ``%2F`` reach the upstream unchanged.
        """
        prefix = self.settings.api_prefix.rstrip("/") + "/"
        if raw_path:
            encoded = raw_path.decode("latin-1")
            if encoded.startswith(prefix):
                return encoded[len(prefix) :]
        return quote(path, safe=PATH_SAFE_CHARS)

    def path_target(self, path: str, query: str = "") -> str:
        """Target URL on the fixed upstream for an already encoded ``path``."""
        prefix = self.settings.api_prefix.rstrip("/")
        url = (
            f"{self.settings.upstream_scheme}://{self.settings.upstream_host}"
            f"{prefix}/{path.lstrip('/')}"
        )
        if query:
            url = f"{url}?{query}"
        return url

    def validate_target(self, target_url: Optional[str]) -> str:
        if not target_url:
            raise RelayClientError('Missing "url" query parameter.')
        parsed = urlsplit(target_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise RelayClientError(f'Invalid "url" query parameter: {target_url}')
        if self.settings.enforce_upstream_host:
            upstream = self.settings.upstream_host.lower()
            if cookie_domain(target_url) != upstream and parsed.hostname != upstream:
                raise RelayClientError(
                    f'Target host "{parsed.netloc}" is not the configured upstream.'
                )
        return target_url

    def require_instance_id(self, headers: Mapping[str, str]) -> str:
        instance_id = headers.get(INSTANCE_ID_HEADER)
        if not instance_id:
            raise RelayClientError(f'Missing "{INSTANCE_ID_HEADER}" header.')
        return instance_id

    async def read_body(self, request: Request) -> bytes:
        limit = self.settings.max_body_bytes
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise RequestBodyTooLarge(f"Request body exceeds {limit} bytes.")
        raw = await request.body()
        if len(raw) > limit:
            raise RequestBodyTooLarge(f"Request body exceeds {limit} bytes.")
        return raw

    async def relay(self, request: Request, target_url: Optional[str]) -> Response:
        exchange = RelayExchange(request.method, target_url)
        try:
            target = self.validate_target(target_url)
            instance_id = self.require_instance_id(request.headers)
        except RelayClientError as e:
            exchange.advance(RelayState.ERRORED)
            logger.warning(f"[Relay] Rejected {request.method} request: {e.message}")
            raise

        with traced_request(
            tracer,
            operation="relay_request",
            instance_id=instance_id,
            start_message=(
                f"[Relay] [{request.method}] {target} (instance {instance_id})"
            ),
            extra_attrs={"relay.target_url": target, "relay.method": request.method},
        ) as span:
            try:
                return await self._exchange(
                    request, exchange, target, instance_id, span
                )
            except Exception as e:
                exchange.advance(RelayState.ERRORED)
                span.set_attribute("relay.error", type(e).__name__)
                relay_error = find_exception_in_exception_groups(e, RelayError)
                if relay_error is not None and relay_error is not e:
                    raise relay_error from e
                raise

    async def _exchange(
        self,
        request: Request,
        exchange: RelayExchange,
        target: str,
        instance_id: str,
        span,
    ) -> Response:
        domain = cookie_domain(target)
        relay_cookie = self.jar.get(instance_id, domain)
        if relay_cookie:
            logger.info(f"[Cookie] Sending stored relay cookie for domain '{domain}'")
        else:
            logger.info(
                mask_token(
                    f"[Cookie] No stored relay cookie for domain '{domain}' "
                    f"and instance '{instance_id}'",
                    instance_id,
                )
            )

        raw = await self.read_body(request)
        content_type = request.headers.get("content-type")
        body = await forward_body(
            raw, content_type, json_passthrough=self.settings.json_passthrough
        )
        headers = build_outbound_headers(
            request.headers,
            instance_id,
            relay_cookie,
            login=is_login_request(target, self.settings.login_path_markers),
            body_kind=body.kind,
            content_type=body.content_type,
            extra_headers=self.settings.forward_headers,
        )
        exchange.advance(RelayState.HEADERS_BUILT)

        logger.debug(
            f"[Relay] Forwarding {request.method} {target}: "
            f"{len(body.content)} bytes ({body.kind})"
        )
        if self.settings.log_bodies:
            logger.debug(
                f"[Body] Request body: {describe_body(body.content, body.content_type)}"
            )

        exchange.advance(RelayState.FORWARDING)
        outbound = self.client.build_request(
            request.method, target, headers=headers, content=body.content or None
        )
        try:
            upstream = await self.client.send(outbound, stream=True)
        except httpx.TransportError as e:
            log_exception_with_details(logger, "[Relay] Upstream request failed", e)
            raise UpstreamNetworkError(
                format_exception_message(e), target_url=target
            ) from e

        exchange.advance(RelayState.RESPONSE_RECEIVED)
        span.set_attribute("relay.status_code", upstream.status_code)
        logger.info(f"[Relay] Upstream answered {upstream.status_code} for {target}")

        self.jar.set(instance_id, domain, upstream.headers.get_list("set-cookie"))
        exchange.advance(RelayState.COOKIE_UPDATED)

        response_headers = build_response_headers(upstream.headers.multi_items())
        if self.settings.log_bodies:
            try:
                content = b"".join([chunk async for chunk in _body_chunks(upstream)])
            except httpx.TransportError as e:
                raise UpstreamNetworkError(
                    format_exception_message(e), target_url=target
                ) from e
            finally:
                await upstream.aclose()
            summary = describe_body(content, upstream.headers.get("content-type"))
            logger.debug(f"[Body] Response body: {summary}")
            response = Response(content=content, status_code=upstream.status_code)
        else:
            response = StreamingResponse(
                _body_chunks(upstream),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )

        for name, value in response_headers:
            response.headers.append(name, value)
        exchange.advance(RelayState.RESPONSE_WRITTEN)
        return response
