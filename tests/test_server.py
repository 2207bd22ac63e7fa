"""
Tests for MockServer routes and body decoding.
"""
import socket

import aiohttp
import pytest

from botmock.config import Settings
from botmock.exceptions import PortBindFailure, UnsupportedMethodWarning
from botmock.recorder import RequestRecorder
from botmock.server import MockServer, decode_form_value

TOKEN = "1234567890:TEST"


@pytest.fixture
async def running(settings: Settings):
    """Started server plus its base API URL."""
    server = MockServer(settings=settings, port=0)
    address, handle = await server.start()
    yield server, f"{address.url}/bot{TOKEN}"
    await handle.stop()


class TestLifecycle:
    """Test starting and stopping."""

    @pytest.mark.asyncio
    async def test_ephemeral_port(self, settings: Settings) -> None:
        """Port 0 binds a real port chosen by the OS."""
        address, handle = await MockServer(settings=settings, port=0).start()
        try:
            assert address.port > 0
            assert address.url == f"http://127.0.0.1:{address.port}"
        finally:
            await handle.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, settings: Settings) -> None:
        _, handle = await MockServer(settings=settings, port=0).start()

        await handle.stop()
        await handle.stop()

        assert handle.stopped

    @pytest.mark.asyncio
    async def test_two_servers_run_side_by_side(self, settings: Settings) -> None:
        first, first_handle = await MockServer(settings=settings, port=0).start()
        second, second_handle = await MockServer(settings=settings, port=0).start()
        try:
            assert first.port != second.port
        finally:
            await first_handle.stop()
            await second_handle.stop()

    @pytest.mark.asyncio
    async def test_occupied_port(self, settings: Settings) -> None:
        """Binding a port already in use raises PortBindFailure."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen()
            port = sock.getsockname()[1]

            with pytest.raises(PortBindFailure):
                await MockServer(settings=settings, port=port).start()


class TestRequests:
    """Test request decoding and responses over HTTP."""

    @pytest.mark.asyncio
    async def test_json_body(self, running) -> None:
        server, base = running
        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/sendMessage", json={"chat_id": 42, "text": "hi"}) as resp:
                body = await resp.json()

        assert resp.status == 200
        assert body["ok"] is True
        assert body["result"]["text"] == "hi"
        assert server.recorder.last().token == TOKEN

    @pytest.mark.asyncio
    async def test_urlencoded_body(self, running) -> None:
        """Non-string values arrive JSON-encoded and are decoded back."""
        server, base = running
        form = {"chat_id": "42", "text": "123", "reply_markup": '{"inline_keyboard": []}'}
        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/sendMessage", data=form) as resp:
                assert resp.status == 200

        request = server.recorder.last("sendMessage")
        assert request.get("chat_id") == 42
        assert request.get("text") == "123"
        assert request.get("reply_markup") == {"inline_keyboard": []}

    @pytest.mark.asyncio
    async def test_query_string_get(self, running) -> None:
        server, base = running
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{base}/getChat", params={"chat_id": "42"}) as resp:
                body = await resp.json()

        assert body["result"]["id"] == 42

    @pytest.mark.asyncio
    async def test_multipart_with_attachment(self, running) -> None:
        server, base = running
        form = aiohttp.FormData()
        form.add_field("chat_id", "42")
        form.add_field("photo", "attach://upload1")
        form.add_field("upload1", b"\x01\x02\x03", filename="tiny.png")

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/sendPhoto", data=form) as resp:
                body = await resp.json()

        photo = server.recorder.last("sendPhoto").file("photo")
        assert body["ok"] is True
        assert photo.content == b"\x01\x02\x03"
        assert photo.filename == "tiny.png"
        assert photo.media_type == "image/png"

    @pytest.mark.asyncio
    async def test_file_under_parameter_name(self, running) -> None:
        server, base = running
        form = aiohttp.FormData()
        form.add_field("chat_id", "42")
        form.add_field("document", b"%PDF", filename="a.pdf", content_type="application/pdf")

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/sendDocument", data=form) as resp:
                assert resp.status == 200

        assert server.recorder.last().file("document").content == b"%PDF"

    @pytest.mark.asyncio
    async def test_malformed_json_is_recorded(self, running) -> None:
        """Unparseable bodies get a 400 and still appear in the recorder."""
        server, base = running
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{base}/sendMessage",
                data=b"{not json",
                headers={"Content-Type": "application/json"},
            ) as resp:
                body = await resp.json()

        assert resp.status == 400
        assert body["ok"] is False
        assert body["description"].startswith("Bad Request")
        assert server.recorder.last().error is not None

    @pytest.mark.asyncio
    async def test_broken_multipart_is_recorded(self, running) -> None:
        server, base = running
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{base}/sendPhoto",
                data=b"garbage",
                headers={"Content-Type": "multipart/form-data; boundary=xyz"},
            ) as resp:
                assert resp.status == 400

        assert server.recorder.last().method == "sendPhoto"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "payload"),
        [
            ("sendLocation", {"chat_id": 1, "latitude": "abc", "longitude": 1.0}),
            ("deleteMessages", {"chat_id": 1, "message_ids": ["x"]}),
            ("sendMediaGroup", {"chat_id": 1, "media": ["a", "b"]}),
            ("sendInvoice", {
                "chat_id": 1, "title": "t", "description": "d", "payload": "p",
                "currency": "XTR", "prices": [{"label": "x"}],
            }),
        ],
    )
    async def test_malformed_parameters_get_json_envelope(
        self, running, method: str, payload: dict,
    ) -> None:
        """Wrongly typed parameters get a 400 envelope, never a server fault."""
        server, base = running
        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/{method}", json=payload) as resp:
                body = await resp.json()

        assert resp.status == 400
        assert resp.content_type == "application/json"
        assert body["ok"] is False
        assert body["description"].startswith("Bad Request")
        assert server.recorder.last().method == method

    @pytest.mark.asyncio
    async def test_unknown_method(self, running) -> None:
        server, base = running
        with pytest.warns(UnsupportedMethodWarning):
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{base}/definitelyNotAMethod", json={}) as resp:
                    body = await resp.json()

        assert resp.status == 404
        assert body["error_code"] == 404
        assert server.recorder.last().method == "definitelyNotAMethod"

    @pytest.mark.asyncio
    async def test_error_envelope_status(self, running) -> None:
        server, base = running
        server.generator.expect_error("sendMessage", error_code=429, retry_after=3)

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{base}/sendMessage", json={"chat_id": 1, "text": "x"}) as resp:
                body = await resp.json()

        assert resp.status == 429
        assert body["parameters"] == {"retry_after": 3}

    @pytest.mark.asyncio
    async def test_calls_recorded_in_arrival_order(self, running) -> None:
        server, base = running
        async with aiohttp.ClientSession() as session:
            for text in ("one", "two", "three"):
                async with session.post(f"{base}/sendMessage", json={"chat_id": 1, "text": text}):
                    pass

        assert [r.get("text") for r in server.recorder.all()] == ["one", "two", "three"]


class TestFileDownload:
    """Test the file route."""

    @pytest.mark.asyncio
    async def test_uploaded_file_served(self, running) -> None:
        server, base = running
        stored = server.generator.state.add_file(b"hello", "text/plain", "document", "a.txt")
        root = base.split("/bot", 1)[0]

        async with aiohttp.ClientSession() as session:
            async with session.get(f"{root}/file/bot{TOKEN}/{stored.file_path}") as resp:
                content = await resp.read()

        assert content == b"hello"

    @pytest.mark.asyncio
    async def test_unknown_file_placeholder(self, running) -> None:
        _, base = running
        root = base.split("/bot", 1)[0]

        async with aiohttp.ClientSession() as session:
            async with session.get(f"{root}/file/bot{TOKEN}/videos/unknown.mp4") as resp:
                content = await resp.read()

        assert resp.status == 200
        assert content


class TestFormDecoding:
    """Test decoding of form values."""

    def test_string_field_kept(self) -> None:
        assert decode_form_value("text", "42") == "42"

    def test_json_field_decoded(self) -> None:
        assert decode_form_value("chat_id", "-100123") == -100123
        assert decode_form_value("disable_notification", "true") is True

    def test_non_json_left_as_is(self) -> None:
        assert decode_form_value("chat_id", "@channel") == "@channel"

    def test_shared_recorder(self, settings: Settings) -> None:
        recorder = RequestRecorder()
        assert MockServer(recorder=recorder, settings=settings).recorder is recorder
