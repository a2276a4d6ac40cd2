"""Tests for the EventSource client against a mocked httpx transport."""

import asyncio

import httpx
import pytest
import respx
from aiohttp import web
from httpx import Response

from sselink.client.eventsource import EventSource
from sselink.client.state_machine import ConnectionState
from sselink.codec.encoder import encode_event
from sselink.codec.event import Event
from sselink.config import SSELinkConfig
from sselink.errors import (
    Cancelled,
    Closed,
    InvalidContentType,
    NoContent,
    UnrecoverableStatus,
)

URL = "http://sse.test/events"


def _stream(body: bytes, content_type: str = "text/event-stream") -> Response:
    return Response(200, headers={"Content-Type": content_type}, content=body)


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def sleeps(monkeypatch):
    """Record reconnect waits instead of sleeping."""
    recorded: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return recorded


class TestRead:
    @pytest.mark.asyncio
    @respx.mock
    async def test_reads_event(self, http_client):
        respx.get(URL).mock(return_value=_stream(b"id: 0\ndata: message 0\n\n"))
        source = EventSource(URL, retry=0.001, client=http_client)

        event = await source.read()

        assert event == Event(id="0", data=b"message 0")
        assert source.last_event_id == "0"
        assert source.state == ConnectionState.STREAMING
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_headers(self, http_client):
        seen = []

        def handler(request):
            seen.append(
                (
                    request.headers.get("Accept"),
                    request.headers.get("Cache-Control"),
                    request.headers.get("Last-Event-Id"),
                )
            )
            return _stream(b"data: x\n\n")

        respx.get(URL).mock(side_effect=handler)
        source = EventSource(URL, client=http_client)
        await source.read()

        assert seen == [("text/event-stream", "no-cache", "")]
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_skips_empty_and_malformed_events(self, http_client):
        body = b"event: ping\ndata\n\ndata: \xff\n\n: comment\n\ndata: real\n\n"
        respx.get(URL).mock(return_value=_stream(body))
        source = EventSource(URL, client=http_client)

        event = await source.read()

        assert event.data == b"real"
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_byte_order_mark(self, http_client):
        body = b"\xef\xbb\xbf" + encode_event(Event(type="custom", data=b"foo"))
        respx.get(URL).mock(return_value=_stream(body))
        source = EventSource(URL, client=http_client)

        assert await source.read() == Event(type="custom", data=b"foo")
        await source.close()


class TestReconnect:
    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_then_success(self, http_client, sleeps):
        route = respx.get(URL).mock(
            side_effect=[Response(500), _stream(b"data: ok\n\n")]
        )
        source = EventSource(URL, retry=3.0, client=http_client)

        event = await source.read()

        assert event.data == b"ok"
        assert source.error is None
        assert route.call_count == 2
        assert sleeps == [3.0]
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_then_success(self, http_client, sleeps):
        route = respx.get(URL).mock(
            side_effect=[
                httpx.ConnectError("connection refused"),
                httpx.ReadTimeout("timed out"),
                _stream(b"data: ok\n\n"),
            ]
        )
        source = EventSource(URL, retry=2.0, client=http_client)

        assert (await source.read()).data == b"ok"
        assert route.call_count == 3
        assert sleeps == [2.0, 2.0]
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_resumes_from_last_event_id(self, http_client, sleeps):
        seen = []

        def handler(request):
            last_id = request.headers.get("Last-Event-Id")
            seen.append(last_id)
            start = int(last_id) + 1 if last_id else 0
            body = b"".join(
                encode_event(Event(id=str(i), data=f"message {i}".encode()))
                for i in range(start, start + 2)
            )
            return _stream(body)

        respx.get(URL).mock(side_effect=handler)
        source = EventSource(URL, retry=0.5, client=http_client)

        events = [await source.read() for _ in range(3)]

        assert [e.id for e in events] == ["0", "1", "2"]
        assert [e.data for e in events] == [b"message 0", b"message 1", b"message 2"]
        assert seen == ["", "1"]
        assert sleeps == [0.5]
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_reset_id_clears_last_event_id(self, http_client, sleeps):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Last-Event-Id"))
            if len(seen) == 1:
                return _stream(b"id: 5\ndata: a\n\nid\ndata: b\n\n")
            return _stream(b"data: c\n\n")

        respx.get(URL).mock(side_effect=handler)
        source = EventSource(URL, client=http_client)

        await source.read()
        assert source.last_event_id == "5"
        second = await source.read()
        assert second.reset_id
        assert source.last_event_id == ""
        await source.read()

        assert seen == ["", ""]
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_id_kept_when_event_has_none(self, http_client, sleeps):
        respx.get(URL).mock(return_value=_stream(b"id: 9\ndata: a\n\ndata: b\n\n"))
        source = EventSource(URL, client=http_client)

        await source.read()
        await source.read()

        assert source.last_event_id == "9"
        await source.close()


class TestRetryInterval:
    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_field_updates_interval(self, http_client):
        body = encode_event(Event(retry="10000", data=b"foo"))
        respx.get(URL).mock(return_value=_stream(body))
        source = EventSource(URL, retry=-1, client=http_client)

        event = await source.read()

        assert event.retry == "10000"
        assert source.retry == 10.0
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_new_interval_used_for_reconnect(self, http_client, sleeps):
        respx.get(URL).mock(
            side_effect=[
                _stream(b"retry: 10000\ndata: a\n\n"),
                _stream(b"data: b\n\n"),
            ]
        )
        source = EventSource(URL, retry=1.0, client=http_client)

        await source.read()
        await source.read()

        assert sleeps == [10.0]
        await source.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retry", ["soon", "-5", "1.5", " 10", "10 ", "1_0"])
    @respx.mock
    async def test_malformed_retry_ignored(self, http_client, retry):
        body = f"retry: {retry}\ndata: foo\n\n".encode()
        respx.get(URL).mock(return_value=_stream(body))
        source = EventSource(URL, retry=2.0, client=http_client)

        await source.read()

        assert source.retry == 2.0
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_signed_retry_accepted(self, http_client):
        respx.get(URL).mock(return_value=_stream(b"retry: +10\ndata: foo\n\n"))
        source = EventSource(URL, retry=2.0, client=http_client)

        await source.read()

        assert source.retry == 0.01
        await source.close()

    def test_non_positive_retry_uses_config(self):
        config = SSELinkConfig(retry_seconds=4.0)
        assert EventSource(URL, retry=0, config=config).retry == 4.0
        assert EventSource(URL, retry=-1, config=config).retry == 4.0
        assert EventSource(URL, config=config).retry == 4.0


class TestFatal:
    @pytest.mark.asyncio
    @respx.mock
    async def test_no_content(self, http_client):
        route = respx.get(URL).mock(return_value=Response(204))
        source = EventSource(URL, client=http_client)

        with pytest.raises(NoContent) as first:
            await source.read()
        with pytest.raises(NoContent) as second:
            await source.read()

        assert first.value is second.value
        assert route.call_count == 1
        assert source.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_content_ends_iteration(self, http_client):
        respx.get(URL).mock(return_value=Response(204))
        source = EventSource(URL, client=http_client)

        assert [event async for event in source] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content_type", [None, "text/html"])
    @respx.mock
    async def test_wrong_content_type(self, http_client, content_type):
        headers = {"Content-Type": content_type} if content_type else {}
        respx.get(URL).mock(return_value=Response(200, headers=headers))
        source = EventSource(URL, client=http_client)

        with pytest.raises(InvalidContentType):
            await source.read()
        assert isinstance(source.error, InvalidContentType)

    @pytest.mark.asyncio
    @respx.mock
    async def test_content_type_parameters_ignored(self, http_client):
        respx.get(URL).mock(
            return_value=_stream(b"data: x\n\n", "text/event-stream; charset=utf-8")
        )
        source = EventSource(URL, client=http_client)

        assert (await source.read()).data == b"x"
        await source.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_unrecoverable_status(self, http_client):
        route = respx.get(URL).mock(return_value=Response(404))
        source = EventSource(URL, client=http_client)

        with pytest.raises(UnrecoverableStatus) as exc_info:
            await source.read()

        assert exc_info.value.status_code == 404
        assert "404 Not Found" in str(exc_info.value)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancelled_request(self, http_client):
        def cancel(request):
            raise asyncio.CancelledError()

        respx.get(URL).mock(side_effect=cancel)
        source = EventSource(URL, client=http_client)

        with pytest.raises(asyncio.CancelledError):
            await source.read()
        with pytest.raises(Cancelled):
            await source.read()
        assert source.state == ConnectionState.CLOSED


class TestClose:
    @pytest.mark.asyncio
    @respx.mock
    async def test_read_after_close(self, http_client):
        respx.get(URL).mock(return_value=_stream(b"data: a\n\ndata: b\n\n"))
        source = EventSource(URL, client=http_client)

        await source.read()
        await source.close()

        with pytest.raises(Closed) as first:
            await source.read()
        with pytest.raises(Closed) as second:
            await source.read()
        assert first.value is second.value
        assert str(first.value) == "closed"

    @pytest.mark.asyncio
    async def test_close_before_read(self, http_client):
        source = EventSource(URL, client=http_client)
        await source.close()

        with pytest.raises(Closed):
            await source.read()
        assert [event async for event in source] == []

    @pytest.mark.asyncio
    async def test_close_keeps_caller_client_open(self, http_client):
        source = EventSource(URL, client=http_client)
        await source.close()
        assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_close_owned_client(self):
        source = EventSource(URL)
        await source.close()
        assert source._client.is_closed

    @pytest.mark.asyncio
    @respx.mock
    async def test_context_manager_and_iteration(self, http_client):
        respx.get(URL).mock(return_value=_stream(b"id: 1\ndata: a\n\nid: 2\ndata: b\n\n"))
        received = []

        async with EventSource(URL, client=http_client) as source:
            async for event in source:
                received.append(event.id)
                if len(received) == 2:
                    break

        assert received == ["1", "2"]
        assert source.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    @respx.mock
    async def test_close_during_request(self, http_client):
        source = EventSource(URL, client=http_client)

        async def close_mid_request(request):
            await source.close()
            raise RuntimeError("client has been closed")

        respx.get(URL).mock(side_effect=close_mid_request)

        with pytest.raises(Closed):
            await source.read()
        assert source.state == ConnectionState.CLOSED


def _server_app(handler) -> web.Application:
    app = web.Application()
    app.router.add_get("/events", handler)
    return app


class TestCloseFromAnotherTask:
    @pytest.mark.asyncio
    async def test_close_unblocks_stalled_read(self, aiohttp_server, http_client):
        async def one_then_stall(request):
            response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
            await response.prepare(request)
            await response.write(encode_event(Event(id="1", data=b"first")))
            await asyncio.Event().wait()
            return response

        server = await aiohttp_server(_server_app(one_then_stall))
        source = EventSource(str(server.make_url("/events")), client=http_client)
        assert (await source.read()).data == b"first"

        pending = asyncio.create_task(source.read())
        await asyncio.sleep(0.05)
        assert not pending.done()

        await source.close()

        with pytest.raises(Closed):
            await asyncio.wait_for(pending, timeout=5)

    @pytest.mark.asyncio
    async def test_close_during_retry_wait(self, aiohttp_server, http_client):
        requests = []

        async def unavailable(request):
            requests.append(request.headers.get("Last-Event-Id"))
            return web.Response(status=503)

        server = await aiohttp_server(_server_app(unavailable))
        source = EventSource(str(server.make_url("/events")), retry=0.2, client=http_client)

        pending = asyncio.create_task(source.read())
        await asyncio.sleep(0.05)
        assert len(requests) == 1

        await source.close()

        with pytest.raises(Closed):
            await asyncio.wait_for(pending, timeout=5)
        assert len(requests) == 1
