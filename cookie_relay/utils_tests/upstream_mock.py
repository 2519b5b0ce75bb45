from typing import Callable, Optional

import httpx

UPSTREAM_HOST = "upstream.test"
INSTANCE_ID = "instance-123"


class RecordingUpstream:
    """Fake upstream for httpx.MockTransport that records every request it sees."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responder: Optional[Callable] = None

    def reply_with(self, responder: Callable) -> None:
        self.responder = responder

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        if self.responder is None:
            return httpx.Response(200, json={"ok": True})
        result = self.responder(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]
