"""
multipart/form-data decoding for file uploads.

The recorded request body is replayed through aiohttp's MultipartReader.
Parts come back in the order received, repeated field names included, and
their content is read without any transfer decoding.
"""
import asyncio
import logging
import mimetypes
import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import quote

from aiohttp import hdrs
from aiohttp.base_protocol import BaseProtocol
from aiohttp.helpers import parse_mimetype
from aiohttp.http_exceptions import HttpProcessingError
from aiohttp.multipart import (
    BadContentDispositionHeader,
    BadContentDispositionParam,
    MultipartReader,
    content_disposition_filename,
    parse_content_disposition,
)
from aiohttp.streams import StreamReader

from botmock.exceptions import MalformedMultipart

logger = logging.getLogger("botmock.multipart")

CRLF = b"\r\n"
OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain"


@dataclass(frozen=True)
class MultipartField:
    """One part of a multipart/form-data body."""

    name: str
    content: bytes
    content_type: str | None = None
    filename: str | None = None

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    @property
    def media_type(self) -> str:
        """Declared media type, or one guessed from the filename extension.

        ``application/octet-stream`` counts as undeclared since HTTP clients
        put it on every upload they know nothing about.
        """
        declared = None
        if self.content_type:
            declared = self.content_type.split(";", 1)[0].strip().lower() or None

        if declared is not None and declared != OCTET_STREAM:
            return declared

        if self.filename:
            guessed, _ = mimetypes.guess_type(self.filename)
            if guessed is not None:
                return guessed

        if declared is not None:
            return declared
        return OCTET_STREAM if self.is_file else TEXT_PLAIN

    @property
    def charset(self) -> str:
        if not self.content_type:
            return "utf-8"
        return parse_mimetype(self.content_type).parameters.get("charset", "utf-8")

    @property
    def text(self) -> str:
        return self.content.decode(self.charset)


def boundary_from_content_type(content_type: str | None) -> str:
    """Extract the boundary parameter from a Content-Type header."""
    if not content_type:
        raise MalformedMultipart("Content-Type header is missing")

    mimetype = parse_mimetype(content_type)
    if (mimetype.type, mimetype.subtype) != ("multipart", "form-data"):
        raise MalformedMultipart(f"not a multipart/form-data body: {content_type}")

    boundary = mimetype.parameters.get("boundary", "").strip('"')
    if not boundary:
        raise MalformedMultipart("multipart boundary is missing")
    return boundary


async def parse(raw_body: bytes, boundary: str) -> list[MultipartField]:
    """Split a multipart/form-data body into its fields.

    Raises MalformedMultipart when the boundary is missing, a part has no
    usable Content-Disposition, or the body ends before the closing
    delimiter.
    """
    if not boundary:
        raise MalformedMultipart("multipart boundary is missing")

    delimiter = b"--" + boundary.encode("latin-1")
    if delimiter not in raw_body:
        raise MalformedMultipart(f"boundary {boundary!r} not found in body")
    if delimiter + b"--" not in raw_body:
        raise MalformedMultipart("body ends before the closing boundary")

    fields: list[MultipartField] = []
    try:
        reader = MultipartReader(
            {hdrs.CONTENT_TYPE: f'multipart/form-data; boundary="{boundary}"'},
            _replay(raw_body),
        )
        while True:
            part = await reader.next()
            if part is None:
                return fields
            if isinstance(part, MultipartReader):
                raise MalformedMultipart("nested multipart bodies are not supported")
            content = await part.read(decode=False)
            fields.append(_make_field(part.headers, bytes(content)))
    except (ValueError, RuntimeError, HttpProcessingError) as exc:
        raise MalformedMultipart(f"malformed multipart body: {exc}") from exc


def encode(fields: list[MultipartField], boundary: str) -> bytes:
    """Serialize fields into a multipart/form-data body."""
    chunks: list[bytes] = []
    for field in fields:
        disposition = f'form-data; name="{_escape(field.name)}"'
        if field.filename is not None:
            disposition += f'; filename="{_escape(field.filename)}"'
            if not field.filename.isascii():
                disposition += f"; filename*=utf-8''{quote(field.filename)}"

        chunks.append(b"--" + boundary.encode("latin-1") + CRLF)
        chunks.append(f"Content-Disposition: {disposition}".encode() + CRLF)
        if field.content_type is not None:
            chunks.append(f"Content-Type: {field.content_type}".encode() + CRLF)
        chunks.append(CRLF)
        chunks.append(field.content + CRLF)

    chunks.append(b"--" + boundary.encode("latin-1") + b"--" + CRLF)
    return b"".join(chunks)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _replay(raw_body: bytes) -> StreamReader:
    # Sized so feeding the whole body never trips flow control
    stream = StreamReader(
        BaseProtocol(asyncio.get_running_loop()),
        limit=max(len(raw_body), 2**16),
        loop=asyncio.get_running_loop(),
    )
    stream.feed_data(raw_body)
    stream.feed_eof()
    return stream


def _make_field(headers: Mapping[str, str], content: bytes) -> MultipartField:
    disposition = headers.get(hdrs.CONTENT_DISPOSITION)
    if disposition is None:
        raise MalformedMultipart("part is missing the Content-Disposition header")

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", BadContentDispositionHeader)
        warnings.simplefilter("ignore", BadContentDispositionParam)
        disposition_type, params = parse_content_disposition(disposition)

    if disposition_type is None:
        raise MalformedMultipart(f"unparseable Content-Disposition: {disposition}")

    name = params.get("name")
    if not name:
        raise MalformedMultipart("part Content-Disposition has no name")

    field = MultipartField(
        name=name,
        content=content,
        content_type=headers.get(hdrs.CONTENT_TYPE),
        filename=content_disposition_filename(params, "filename"),
    )
    logger.debug(
        "multipart field %s: %d bytes%s",
        field.name,
        len(content),
        f", file {field.filename}" if field.is_file else "",
    )
    return field
