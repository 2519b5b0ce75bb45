class RelayError(Exception):
    """Base class for failures that end a single relay exchange."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RelayClientError(RelayError):
    """The inbound request cannot be relayed as sent (missing url, instance id, ...)."""

    status_code = 400


class RequestBodyTooLarge(RelayClientError):
    status_code = 413


class UpstreamNetworkError(RelayError):
    """Connection, DNS or timeout failure while talking to the upstream."""

    status_code = 502

    def __init__(self, message: str, *, target_url: str = ""):
        super().__init__(message)
        self.target_url = target_url


class MalformedBody(ValueError):
    """The request body does not parse as its declared content type."""

    def __init__(self, message: str, *, content_type: str = ""):
        super().__init__(message)
        self.content_type = content_type
