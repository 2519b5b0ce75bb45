import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import Response
from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from cookie_relay import vars as relay_vars

logger = logging.getLogger("uvicorn.error")

REFLECT_ORIGIN = "reflect-origin"
FIXED_ORIGIN_ALLOWLIST = "fixed-origin-allowlist"
CORS_MODES = (REFLECT_ORIGIN, FIXED_ORIGIN_ALLOWLIST)

ALLOWED_HEADERS = (
    "Origin",
    "X-Requested-With",
    "Content-Type",
    "Accept",
    "Authorization",
    "x-boomtown-client-instance-id",
    "acting-as",
    "no-translate",
    "platform-version",
    "priority",
    "time-zone",
    "x-boomtown-csrf-token",
    "x-request-id",
)
ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


@dataclass(frozen=True)
class CORSPolicy:
    mode: str = REFLECT_ORIGIN
    allowed_origin: Optional[str] = None

    def __post_init__(self):
        if self.mode not in CORS_MODES:
            raise ValueError(
                f"Unknown CORS mode: {self.mode} "
                f"(expected one of {', '.join(CORS_MODES)})"
            )
        if self.mode == FIXED_ORIGIN_ALLOWLIST and not self.allowed_origin:
            raise ValueError("fixed-origin-allowlist mode requires an allowed origin")

    @classmethod
    def from_env(cls) -> "CORSPolicy":
        return cls(
            mode=relay_vars.RELAY_CORS_MODE,
            allowed_origin=relay_vars.RELAY_ALLOWED_ORIGIN or None,
        )

    def allow_origin(self, origin: Optional[str]) -> Optional[str]:
        """The value for Access-Control-Allow-Origin, or None when the origin is refused."""
        if not origin:
            return None
        if self.mode == REFLECT_ORIGIN:
            return origin
        return origin if origin == self.allowed_origin else None

    def headers_for(self, origin: Optional[str]) -> dict[str, str]:
        headers = {
            "Access-Control-Allow-Headers": ", ".join(ALLOWED_HEADERS),
            "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
        }
        allowed = self.allow_origin(origin)
        if allowed:
            headers["Access-Control-Allow-Origin"] = allowed
            headers["Access-Control-Allow-Credentials"] = "true"
        return headers


def _add_vary_origin(headers: MutableHeaders) -> None:
    vary = headers.get("vary")
    if not vary:
        headers["Vary"] = "Origin"
    elif "origin" not in [v.strip().lower() for v in vary.split(",")]:
        headers["Vary"] = f"{vary}, Origin"


class CORSGateMiddleware(BaseHTTPMiddleware):
    """
    Cross-origin filter in front of every route.

    Preflight (and any other OPTIONS) requests are answered here with an empty
    200 and never reach the relay.
    """

    def __init__(self, app: ASGIApp, policy: Optional[CORSPolicy] = None):
        super().__init__(app)
        self.policy = policy or CORSPolicy.from_env()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        origin = request.headers.get("origin")
        logger.debug(f"[CORS] [{request.method}] {request.url.path} origin={origin}")
        cors_headers = self.policy.headers_for(origin)

        if request.method == "OPTIONS":
            logger.debug("[CORS] OPTIONS request, sending 200")
            response = Response(status_code=200, headers=cors_headers)
        else:
            response = await call_next(request)
            for name in set(response.headers.keys()):
                if name.lower().startswith("access-control-"):
                    del response.headers[name]
            response.headers.update(cors_headers)

        if origin:
            _add_vary_origin(response.headers)
        return response
