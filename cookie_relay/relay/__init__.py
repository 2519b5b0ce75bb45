from .body import ForwardedBody, forward_body
from .handler import RelayHandler, RelayState, build_upstream_client
from .headers import build_outbound_headers, build_response_headers
from .settings import RelaySettings

__all__ = [
    "ForwardedBody",
    "forward_body",
    "RelayHandler",
    "RelayState",
    "build_upstream_client",
    "build_outbound_headers",
    "build_response_headers",
    "RelaySettings",
]
