import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from cookie_relay.utils import mask_token, token_fingerprint
from cookie_relay.vars import RELAY_COOKIE_JAR, RELAY_COOKIE_NAME

logger = logging.getLogger("uvicorn.error")

JarKey = tuple[str, str]


def extract_relay_cookie(
    set_cookie_values: Iterable[str], cookie_name: str = RELAY_COOKIE_NAME
) -> Optional[str]:
    """
    Pick the first ``<cookie_name>=`` cookie out of raw Set-Cookie values.

    Only the ``name=value`` pair is returned; attributes such as Path, Secure
    or HttpOnly are dropped. The prefix match is case-insensitive.
    """
    prefix = f"{cookie_name.lower()}="
    for raw in set_cookie_values or ():
        if not raw:
            continue
        candidate = raw.lstrip()
        if candidate.lower().startswith(prefix):
            return candidate.split(";", 1)[0].strip()
    return None


class CookieJarBase(ABC):
    @abstractmethod
    def get(self, instance_id: str, domain: str) -> Optional[str]:
        pass

    @abstractmethod
    def store(self, instance_id: str, domain: str, cookie: str) -> None:
        pass

    @abstractmethod
    def snapshot(self) -> dict[JarKey, str]:
        pass

    def set(
        self, instance_id: str, domain: str, set_cookie_values: Iterable[str]
    ) -> Optional[str]:
        """Store the relay cookie found in ``set_cookie_values``; no-op when absent."""
        cookie = extract_relay_cookie(set_cookie_values)
        if cookie is None:
            return None
        self.store(instance_id, domain, cookie)
        logger.info(
            f"[Cookie] Stored relay cookie for domain '{domain}' and instance "
            f"'{mask_token(instance_id, instance_id)}': {token_fingerprint(cookie)}"
        )
        return cookie

    def __len__(self) -> int:
        return len(self.snapshot())


def cookie_jar(name: str = RELAY_COOKIE_JAR) -> CookieJarBase:
    if name == "InMemoryCookieJar":
        return InMemoryCookieJar()
    cls = globals().get(name)
    if isinstance(cls, type) and issubclass(cls, CookieJarBase):
        return cls()
    else:
        raise ValueError(f"Unknown cookie jar type: {name}")


class InMemoryCookieJar(CookieJarBase):
    """Process-lifetime jar; one relay cookie per (instance id, domain), last write wins."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cookies: dict[JarKey, str] = {}

    def get(self, instance_id: str, domain: str) -> Optional[str]:
        with self._lock:
            return self._cookies.get((instance_id, domain))

    def store(self, instance_id: str, domain: str, cookie: str) -> None:
        with self._lock:
            self._cookies[(instance_id, domain)] = cookie

    def snapshot(self) -> dict[JarKey, str]:
        with self._lock:
            return dict(self._cookies)
