from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from cookie_relay.relay import RelayHandler

RELAY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def get_relay_handler(request: Request) -> RelayHandler:
    return request.app.state.relay_handler


async def proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Full target URL on the upstream"),
    handler: RelayHandler = Depends(get_relay_handler),
) -> Response:
    """Relay the request to the absolute upstream URL given in ``?url=``."""
    return await handler.relay(request, url)


async def relay_path(
    request: Request,
    path: str,
    handler: RelayHandler = Depends(get_relay_handler),
) -> Response:
    """Relay the request to the same path on the fixed upstream."""
    subpath = handler.encoded_subpath(request.scope.get("raw_path"), path)
    target = handler.path_target(subpath, request.url.query)
    return await handler.relay(request, target)


def build_router(api_prefix: str = "/api") -> APIRouter:
    router = APIRouter()
    router.add_api_route("/proxy", proxy, methods=RELAY_METHODS)
    router.add_api_route(
        f"{api_prefix.rstrip('/')}/{{path:path}}", relay_path, methods=RELAY_METHODS
    )
    return router
