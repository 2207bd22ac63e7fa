"""
Fake Telegram Bot API HTTP server.

Accepts requests in the same format as api.telegram.org (JSON, urlencoded
or multipart bodies), records every call, and answers it with the response
built by MockResponseGenerator. Uploaded files can be downloaded back
through the file route.
"""
import json
import logging
from collections.abc import Iterable
from typing import Any, NamedTuple

from aiohttp import hdrs, web

from botmock import multipart
from botmock.config import Settings, get_settings
from botmock.exceptions import MalformedMultipart, PortBindFailure
from botmock.generator import MockResponseGenerator
from botmock.recorder import CapturedFile, RequestRecorder
from botmock.responses import MockResponse

logger = logging.getLogger("botmock.server")

ATTACH_PREFIX = "attach://"

# Sent by the client as raw text; everything else is JSON-encoded by aiogram
STRING_FIELDS = frozenset({
    "action",
    "address",
    "animation",
    "audio",
    "business_connection_id",
    "callback_query_id",
    "caption",
    "currency",
    "custom_title",
    "data",
    "description",
    "document",
    "emoji",
    "file_id",
    "file_name",
    "first_name",
    "icon_custom_emoji_id",
    "inline_message_id",
    "inline_query_id",
    "language_code",
    "last_name",
    "message_effect_id",
    "name",
    "parse_mode",
    "payload",
    "performer",
    "phone_number",
    "photo",
    "provider_data",
    "provider_token",
    "query",
    "question",
    "secret_token",
    "start_parameter",
    "sticker",
    "text",
    "thumbnail",
    "title",
    "url",
    "vcard",
    "video",
    "video_note",
    "voice",
})

# Returned for downloads of files the bot never uploaded
PLACEHOLDER_FILE = b"\x00\x00\x00\x1cftypisom" + b"\x00" * 100


class MalformedBody(ValueError):
    """Request body that cannot be decoded into parameters."""


class ServerAddress(NamedTuple):
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class ShutdownHandle:
    """Stops a running MockServer; calling stop() again is a no-op."""

    def __init__(self, runner: web.AppRunner) -> None:
        self._runner = runner
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        await self._runner.cleanup()
        logger.debug("Mock server stopped")


def decode_form_value(name: str, value: str) -> Any:
    """Undo aiogram's JSON encoding of non-string form values."""
    if name in STRING_FIELDS:
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


def resolve_attachments(value: Any, files: dict[str, CapturedFile], used: set[str]) -> Any:
    """Replace ``attach://<name>`` references with the uploaded files."""
    if isinstance(value, str) and value.startswith(ATTACH_PREFIX):
        name = value[len(ATTACH_PREFIX):]
        if name in files:
            used.add(name)
            return files[name]
        return value
    if isinstance(value, list):
        return [resolve_attachments(item, files, used) for item in value]
    if isinstance(value, dict):
        return {key: resolve_attachments(item, files, used) for key, item in value.items()}
    return value


class MockServer:
    """
    Fake Telegram Bot API server.

    Every call is recorded before a response is generated, including calls
    whose body could not be parsed.
    """

    def __init__(
        self,
        recorder: RequestRecorder | None = None,
        generator: MockResponseGenerator | None = None,
        settings: Settings | None = None,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.recorder = recorder if recorder is not None else RequestRecorder()
        self.generator = generator if generator is not None else MockResponseGenerator()
        self.host = host or settings.host
        self.ports = [port] if port is not None else settings.port_candidates()
        self.app = web.Application(client_max_size=50 * 1024 * 1024)
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup URL routes for Telegram API methods."""
        self.app.router.add_get("/file/bot{token}/{path:.*}", self._handle_file_download)
        self.app.router.add_post("/bot{token}/{method}", self._handle_request)
        self.app.router.add_get("/bot{token}/{method}", self._handle_request)

    async def start(self) -> tuple[ServerAddress, ShutdownHandle]:
        """Bind the first free candidate port and start serving."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        failures = []
        for port in self.ports:
            site = web.TCPSite(runner, self.host, port)
            try:
                await site.start()
            except OSError as exc:
                failures.append(f"{port}: {exc.strerror or exc}")
                await site.stop()
                continue

            bound_port = runner.addresses[0][1]
            address = ServerAddress(self.host, bound_port)
            logger.debug("Mock server listening on %s", address.url)
            return address, ShutdownHandle(runner)

        await runner.cleanup()
        raise PortBindFailure(
            f"Could not bind mock server on {self.host} "
            f"(tried {len(self.ports)} port(s)): {'; '.join(failures[-3:])}"
        )

    async def _handle_request(self, request: web.Request) -> web.Response:
        """Handle incoming API request."""
        method = request.match_info["method"]
        token = request.match_info["token"]

        try:
            params, files = await self._parse_request(request)
        except (MalformedBody, MalformedMultipart) as exc:
            logger.warning("Malformed %s request body: %s", method, exc)
            self.recorder.record(method, token=token, error=str(exc))
            response = MockResponse.error(f"Bad Request: {exc}")
        else:
            captured = self.recorder.record(method, params, files, token=token)
            response = self.generator.generate(method, captured.params, captured.files)

        logger.debug("API %s -> %s", method, "ok" if response.ok else response.error_code)
        return web.json_response(response.to_payload(), status=response.http_status)

    async def _handle_file_download(self, request: web.Request) -> web.Response:
        """Serve bytes of an uploaded file (for bot.download)."""
        path = request.match_info["path"]
        if not path:
            raise web.HTTPNotFound()

        stored = self.generator.state.get_file_by_path(path)
        if stored is None:
            return web.Response(body=PLACEHOLDER_FILE, content_type="application/octet-stream")
        return web.Response(body=stored.content, content_type=stored.media_type)

    async def _parse_request(
        self, request: web.Request,
    ) -> tuple[list[tuple[str, Any]], list[CapturedFile]]:
        """Decode query string and body into ordered params plus uploaded files."""
        params: list[tuple[str, Any]] = [
            (key, decode_form_value(key, value)) for key, value in request.query.items()
        ]
        if not request.can_read_body:
            return params, []

        content_type = request.content_type
        if content_type == "application/json":
            params.extend(self._parse_json(await request.read()))
            return params, []

        if content_type == "multipart/form-data":
            fields = await multipart.parse(
                await request.read(),
                multipart.boundary_from_content_type(request.headers.get(hdrs.CONTENT_TYPE)),
            )
            return self._collect_fields(params, fields)

        try:
            form = await request.post()
        except UnicodeDecodeError as exc:
            raise MalformedBody(f"form body is not valid text: {exc.reason}") from None
        params.extend((key, decode_form_value(key, value)) for key, value in form.items())
        return params, []

    @staticmethod
    def _parse_json(raw: bytes) -> Iterable[tuple[str, Any]]:
        if not raw.strip():
            return []
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise MalformedBody(f"can't parse JSON body: {exc}") from None
        if not isinstance(data, dict):
            raise MalformedBody("JSON body must be an object")
        return data.items()

    @staticmethod
    def _collect_fields(
        params: list[tuple[str, Any]],
        fields: list[multipart.MultipartField],
    ) -> tuple[list[tuple[str, Any]], list[CapturedFile]]:
        files: list[CapturedFile] = []
        files_by_name: dict[str, CapturedFile] = {}
        values: list[tuple[str, Any]] = []

        for field in fields:
            if field.is_file:
                captured = CapturedFile(
                    field_name=field.name,
                    content=field.content,
                    media_type=field.media_type,
                    filename=field.filename,
                )
                files.append(captured)
                files_by_name.setdefault(field.name, captured)
                continue
            try:
                text = field.text
            except (UnicodeDecodeError, LookupError) as exc:
                raise MalformedMultipart(f"field {field.name!r} is not valid text: {exc}") from None
            values.append((field.name, decode_form_value(field.name, text)))

        used: set[str] = set()
        for name, value in values:
            params.append((name, resolve_attachments(value, files_by_name, used)))

        # Files sent under the parameter name itself rather than attach://
        for captured in files:
            if captured.field_name not in used:
                params.append((captured.field_name, captured))

        return params, files
