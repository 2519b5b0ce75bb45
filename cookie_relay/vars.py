import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cookie-relay")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3005"))

RELAY_UPSTREAM_HOST = os.environ.get("RELAY_UPSTREAM_HOST", "app.stage.goboomtown.com")
RELAY_UPSTREAM_SCHEME = os.environ.get("RELAY_UPSTREAM_SCHEME", "https")
RELAY_API_PREFIX = "/" + os.environ.get("RELAY_API_PREFIX", "/api").strip("/")
RELAY_ENFORCE_UPSTREAM_HOST = (
    os.getenv("RELAY_ENFORCE_UPSTREAM_HOST", "true").lower() == "true"
)

# "reflect-origin" or "fixed-origin-allowlist"
RELAY_CORS_MODE = os.getenv("RELAY_CORS_MODE", "reflect-origin").lower()
RELAY_ALLOWED_ORIGIN = os.getenv("RELAY_ALLOWED_ORIGIN", "http://localhost:5174")

RELAY_UPSTREAM_TIMEOUT = float(os.getenv("RELAY_UPSTREAM_TIMEOUT", "30"))
RELAY_MAX_BODY_BYTES = int(os.getenv("RELAY_MAX_BODY_BYTES", str(50 * 1024 * 1024)))

RELAY_FORWARD_HEADERS = [
    h.strip().lower()
    for h in os.getenv("RELAY_FORWARD_HEADERS", "").split(",")
    if h.strip()
]
RELAY_LOGIN_PATH_MARKERS = [
    m.strip().lower()
    for m in os.getenv("RELAY_LOGIN_PATH_MARKERS", "login").split(",")
    if m.strip()
]
RELAY_JSON_PASSTHROUGH = os.getenv("RELAY_JSON_PASSTHROUGH", "false").lower() == "true"
RELAY_COOKIE_JAR = os.getenv("RELAY_COOKIE_JAR", "InMemoryCookieJar")
RELAY_LOG_BODIES = os.getenv("RELAY_LOG_BODIES", "false").lower() == "true"

INSTANCE_ID_HEADER = "x-boomtown-client-instance-id"
RELAY_COOKIE_NAME = "relay"

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
