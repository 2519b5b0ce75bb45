"""
Request body forwarding.

The relay reads the complete inbound body and turns it into bytes the
upstream can decode into the same logical request:

- raw/binary bodies are passed through byte-for-byte
- JSON is re-serialized from the parsed document
- URL-encoded forms are re-encoded pair by pair
- multipart forms are parsed and rebuilt under a fresh boundary, with file
  parts keeping their filename, content type and payload

Anything that does not parse as its declared type is forwarded raw.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode

from starlette.datastructures import Headers, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser

from cookie_relay.errors import MalformedBody
from cookie_relay.vars import RELAY_JSON_PASSTHROUGH

logger = logging.getLogger("uvicorn.error")

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"
MULTIPART_MEDIA_TYPE = "multipart/form-data"


@dataclass(frozen=True)
class ForwardedBody:
    content: bytes
    content_type: Optional[str]
    kind: str  # empty | json | form | multipart | raw


@dataclass(frozen=True)
class FilePart:
    filename: Optional[str]
    content: bytes
    content_type: Optional[str] = None


FormValue = Union[str, FilePart]


def media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _is_json_media(mt: str) -> bool:
    return mt == JSON_MEDIA_TYPE or mt.endswith("+json")


def reserialize_json(raw: bytes) -> bytes:
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedBody(
            f"Invalid JSON body: {e}", content_type=JSON_MEDIA_TYPE
        ) from e
    return json.dumps(document, ensure_ascii=False).encode("utf-8")


def reserialize_form(raw: bytes) -> bytes:
    try:
        pairs = parse_qsl(raw.decode("utf-8"), keep_blank_values=True)
    except UnicodeDecodeError as e:
        raise MalformedBody(
            f"Invalid form body: {e}", content_type=FORM_MEDIA_TYPE
        ) from e
    return urlencode(pairs).encode("ascii")


async def parse_multipart(
    raw: bytes, content_type: str
) -> list[tuple[str, FormValue]]:
    """Parse a multipart body into ordered (name, value) items."""

    async def _stream():
        yield raw

    parser = MultiPartParser(
        Headers({"content-type": content_type}),
        _stream(),
        max_part_size=max(len(raw), 1024 * 1024),
    )
    try:
        form = await parser.parse()
    except (MultiPartException, ValueError) as e:
        # python-multipart raises ValueError subclasses on malformed input
        reason = getattr(e, "message", None) or str(e)
        raise MalformedBody(
            f"Invalid multipart body: {reason}", content_type=content_type
        ) from e

    items: list[tuple[str, FormValue]] = []
    try:
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                items.append(
                    (
                        name,
                        FilePart(
                            filename=value.filename,
                            content=await value.read(),
                            content_type=value.content_type,
                        ),
                    )
                )
            else:
                items.append((name, value))
    finally:
        await form.close()
    return items


def _quote_param(value: str) -> str:
    return (
        value.replace('"', "%22")
        .replace("\r", "%0D")
        .replace("\n", "%0A")
    )


def new_boundary(payloads: list[bytes]) -> str:
    """Generate a boundary that does not occur in any of the part payloads."""
    while True:
        boundary = f"----CookieRelayBoundary{uuid.uuid4().hex}"
        marker = boundary.encode("ascii")
        if not any(marker in payload for payload in payloads):
            return boundary


def encode_multipart(
    items: list[tuple[str, FormValue]], boundary: Optional[str] = None
) -> tuple[bytes, str]:
    """Serialize form items as multipart/form-data; returns (body, content type)."""
    payloads = [
        value.content if isinstance(value, FilePart) else value.encode("utf-8")
        for _, value in items
    ]
    boundary = boundary or new_boundary(payloads)
    delimiter = f"--{boundary}\r\n".encode("ascii")

    chunks: list[bytes] = []
    for (name, value), payload in zip(items, payloads):
        disposition = f'form-data; name="{_quote_param(name)}"'
        part_headers = []
        if isinstance(value, FilePart):
            if value.filename is not None:
                disposition += f'; filename="{_quote_param(value.filename)}"'
            part_headers.append(f"Content-Disposition: {disposition}")
            part_headers.append(
                f"Content-Type: {value.content_type or 'application/octet-stream'}"
            )
        else:
            part_headers.append(f"Content-Disposition: {disposition}")
        chunks.append(delimiter)
        chunks.append(("\r\n".join(part_headers) + "\r\n\r\n").encode("utf-8"))
        chunks.append(payload)
        chunks.append(b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode("ascii"))

    return b"".join(chunks), f"{MULTIPART_MEDIA_TYPE}; boundary={boundary}"


async def forward_body(
    raw: bytes,
    content_type: Optional[str],
    *,
    json_passthrough: bool = RELAY_JSON_PASSTHROUGH,
) -> ForwardedBody:
    """
    Produce the outbound body for ``raw`` declared as ``content_type``.

    Parse failures are logged and the raw bytes are forwarded instead.
    """
    if not raw:
        return ForwardedBody(b"", content_type or None, "empty")

    mt = media_type(content_type)
    try:
        if _is_json_media(mt) and not json_passthrough:
            return ForwardedBody(reserialize_json(raw), content_type, "json")
        if mt == FORM_MEDIA_TYPE:
            return ForwardedBody(reserialize_form(raw), FORM_MEDIA_TYPE, "form")
        if mt == MULTIPART_MEDIA_TYPE:
            items = await parse_multipart(raw, content_type)
            body, outbound_type = encode_multipart(items)
            return ForwardedBody(body, outbound_type, "multipart")
    except MalformedBody as e:
        logger.warning(f"[Body] {e}; forwarding raw body ({len(raw)} bytes)")
        return ForwardedBody(raw, content_type, "raw")

    if _is_json_media(mt):
        return ForwardedBody(raw, content_type, "json")
    return ForwardedBody(raw, content_type or None, "raw")


def describe_body(content: bytes, content_type: Optional[str]) -> str:
    """Short, log-friendly rendering of a request or response body."""
    mt = media_type(content_type)
    if not content:
        return "[Empty]"
    if _is_json_media(mt):
        try:
            return json.dumps(json.loads(content), ensure_ascii=False)[:2000]
        except (UnicodeDecodeError, ValueError):
            return f"[Unparseable JSON] {len(content)} bytes"
    if mt.startswith("text/") or mt == FORM_MEDIA_TYPE:
        return content.decode("utf-8", errors="replace")[:2000]
    return f"[Binary data] {len(content)} bytes"
