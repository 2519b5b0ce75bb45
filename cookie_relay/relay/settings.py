from dataclasses import dataclass

from cookie_relay import vars as relay_vars


@dataclass(frozen=True)
class RelaySettings:
    upstream_host: str = "app.stage.goboomtown.com"
    upstream_scheme: str = "https"
    api_prefix: str = "/api"
    enforce_upstream_host: bool = True
    timeout: float = 30.0
    max_body_bytes: int = 50 * 1024 * 1024
    forward_headers: tuple[str, ...] = ()
    login_path_markers: tuple[str, ...] = ("login",)
    json_passthrough: bool = False
    log_bodies: bool = False

    @classmethod
    def from_env(cls) -> "RelaySettings":
        return cls(
            upstream_host=relay_vars.RELAY_UPSTREAM_HOST,
            upstream_scheme=relay_vars.RELAY_UPSTREAM_SCHEME,
            api_prefix=relay_vars.RELAY_API_PREFIX,
            enforce_upstream_host=relay_vars.RELAY_ENFORCE_UPSTREAM_HOST,
            timeout=relay_vars.RELAY_UPSTREAM_TIMEOUT,
            max_body_bytes=relay_vars.RELAY_MAX_BODY_BYTES,
            forward_headers=tuple(relay_vars.RELAY_FORWARD_HEADERS),
            login_path_markers=tuple(relay_vars.RELAY_LOGIN_PATH_MARKERS),
            json_passthrough=relay_vars.RELAY_JSON_PASSTHROUGH,
            log_bodies=relay_vars.RELAY_LOG_BODIES,
        )
