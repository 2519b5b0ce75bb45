from .cookie_jar import (
    CookieJarBase,
    InMemoryCookieJar,
    cookie_jar,
    extract_relay_cookie,
)

__all__ = [
    "CookieJarBase",
    "InMemoryCookieJar",
    "cookie_jar",
    "extract_relay_cookie",
]
