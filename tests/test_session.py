"""End-to-end tests for the session handler over real TCP connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from unittest.mock import AsyncMock, MagicMock

import pytest

from linechat.server import bound_port, start_server
from linechat.services.commands import GOODBYE, CommandInterpreter
from linechat.services.session import TIMEOUT_NOTICE, SessionHandler


@contextlib.asynccontextmanager
async def running_server(config, clock=None):
    kwargs = {}
    if clock is not None:
        kwargs = {"interpreter": CommandInterpreter(clock=clock), "clock": clock}
    server = await start_server(config, SessionHandler(config, **kwargs))
    try:
        yield bound_port(server)
    finally:
        server.close()
        await asyncio.wait_for(server.wait_closed(), timeout=5)


async def exchange(reader, writer, line: bytes) -> bytes:
    writer.write(line)
    await writer.drain()
    return await asyncio.wait_for(reader.readuntil(b"\n\n"), timeout=5)


async def read_to_eof(reader) -> bytes:
    try:
        return await asyncio.wait_for(reader.read(), timeout=5)
    except ConnectionResetError:
        return b""


async def close_client(writer) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError):
        await writer.wait_closed()


async def wait_for_log(caplog, text: str) -> None:
    for _ in range(100):
        if text in caplog.text:
            return
        await asyncio.sleep(0.02)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_hello_keeps_connection_open(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"hello\n") == b"Hi there!\n\n"
            assert await exchange(reader, writer, b"/echo still here\n") == b"still here\n\n"
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_echo(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"/echo ping\n") == b"ping\n\n"
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_bye_delivers_goodbye_before_eof(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"bye\n")
            await writer.drain()
            data = await asyncio.wait_for(reader.read(), timeout=5)
            assert data == GOODBYE.encode()
            assert reader.at_eof()
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_quit_with_pipelined_lines(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"hello\n/quit\nnever answered\n")
            await writer.drain()
            data = await asyncio.wait_for(reader.read(), timeout=5)
            assert data == b"Hi there!\n\n" + GOODBYE.encode()
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_idle_timeout(self, app_config):
        app_config.server.timeout = 1
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            data = await read_to_eof(reader)
            assert data == TIMEOUT_NOTICE.encode()
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_idle_timeout_resets_on_each_line(self, app_config):
        app_config.server.timeout = 1
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            for _ in range(3):
                await asyncio.sleep(0.6)
                assert await exchange(reader, writer, b"hello\n") == b"Hi there!\n\n"
            assert await read_to_eof(reader) == TIMEOUT_NOTICE.encode()
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_empty_line(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"\n") == b"Say something...\n\n"
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_random_text(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"RANDOM TEXT\n") == b"RANDOM TEXT\n\n"
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_crlf_line(self, app_config):
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"hello\r\n") == b"Hi there!\n\n"
            await close_client(writer)


class TestFailures:
    @pytest.mark.asyncio
    async def test_oversized_line_closes_without_response(self, app_config):
        app_config.server.max_line = 64
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"x" * 4096)
            with contextlib.suppress(ConnectionError):
                await writer.drain()
            assert await read_to_eof(reader) == b""
            await close_client(writer)

    @pytest.mark.asyncio
    async def test_client_close_ends_session(self, app_config, caplog):
        caplog.set_level(logging.INFO, logger="linechat.services.session")
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            assert await exchange(reader, writer, b"hello\n") == b"Hi there!\n\n"
            writer.write_eof()
            assert await read_to_eof(reader) == b""
            await close_client(writer)
            await wait_for_log(caplog, "Client disconnected")
        assert "Connection closed by client" in caplog.text
        assert "Client disconnected: 127.0.0.1 (1 messages" in caplog.text

    @pytest.mark.asyncio
    async def test_unterminated_tail_is_discarded(self, app_config, fake_clock):
        async with running_server(app_config, clock=fake_clock) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"partial")
            writer.write_eof()
            assert await read_to_eof(reader) == b""
            await close_client(writer)
        transcript = app_config.transcript.directory + "/127.0.0.1.log"
        with open(transcript, encoding="utf-8") as f:
            assert f.read() == ""

    @pytest.mark.asyncio
    async def test_transcript_failure_abandons_session(self, app_config, tmp_path, caplog):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        app_config.transcript.directory = str(blocker)
        async with running_server(app_config) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"hello\n")
            assert await read_to_eof(reader) == b""
            await close_client(writer)
        assert "Error creating transcript" in caplog.text


class TestTranscript:
    @pytest.mark.asyncio
    async def test_one_entry_per_line_in_order(self, app_config, fake_clock):
        lines = [b"hello\n", b"\n", b"/echo  two spaces\n", b"RANDOM TEXT\n"]
        async with running_server(app_config, clock=fake_clock) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            for line in lines:
                await exchange(reader, writer, line)
            await close_client(writer)

        with open(app_config.transcript.directory + "/127.0.0.1.log", encoding="utf-8") as f:
            recorded = f.read().splitlines()

        assert [entry.split("] ", 1)[1] for entry in recorded] == [
            "hello",
            "",
            "/echo  two spaces",
            "RANDOM TEXT",
        ]
        stamps = [entry[1:].split("]", 1)[0] for entry in recorded]
        assert stamps == sorted(stamps)

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self, app_config, fake_clock):
        async with running_server(app_config, clock=fake_clock) as port:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            response = await exchange(reader, writer, b"caf\xff\n")
            assert response == "caf\ufffd\n\n".encode()
            await close_client(writer)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, app_config):
        async with running_server(app_config) as port:
            r1, w1 = await asyncio.open_connection("127.0.0.1", port)
            r2, w2 = await asyncio.open_connection("127.0.0.1", port)

            assert await exchange(r1, w1, b"/echo one\n") == b"one\n\n"
            assert await exchange(r2, w2, b"/echo two\n") == b"two\n\n"

            w1.write(b"bye\n")
            await w1.drain()
            assert await read_to_eof(r1) == GOODBYE.encode()

            assert await exchange(r2, w2, b"hello\n") == b"Hi there!\n\n"
            await close_client(w1)
            await close_client(w2)


def _mock_writer(peer=("10.1.2.3", 5555)):
    writer = MagicMock()
    writer.get_extra_info.return_value = peer
    writer.drain = AsyncMock()
    writer.wait_closed = AsyncMock()
    return writer


class TestSessionHandlerStreams:
    @pytest.mark.asyncio
    async def test_write_error_ends_session(self, app_config, fake_clock):
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(b"hello\nhello\n")
        writer = _mock_writer()
        writer.drain.side_effect = ConnectionResetError("reset by peer")

        await SessionHandler(app_config, clock=fake_clock).handle(reader, writer)

        writer.write.assert_called_once_with(b"Hi there!\n\n")
        writer.close.assert_called_once()
        with open(app_config.transcript.directory + "/10.1.2.3.log", encoding="utf-8") as f:
            assert len(f.read().splitlines()) == 1

    @pytest.mark.asyncio
    async def test_terminate_without_half_close_support(self, app_config, fake_clock):
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(b"bye\n")
        writer = _mock_writer()
        writer.can_write_eof.return_value = False

        await SessionHandler(app_config, clock=fake_clock).handle(reader, writer)

        writer.write.assert_called_once_with(GOODBYE.encode())
        writer.write_eof.assert_not_called()
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_half_close_then_wait_for_peer_eof(self, app_config, fake_clock):
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(b"/quit\ntrailing data\n")
        reader.feed_eof()
        writer = _mock_writer()
        writer.can_write_eof.return_value = True

        await SessionHandler(app_config, clock=fake_clock).handle(reader, writer)

        writer.write_eof.assert_called_once()
        writer.close.assert_called_once()
        assert reader.at_eof()

    @pytest.mark.asyncio
    async def test_ipv6_peer_transcript_name(self, app_config, fake_clock):
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(b"hello\n")
        reader.feed_eof()
        writer = _mock_writer(peer=("::1", 4000, 0, 0))

        await SessionHandler(app_config, clock=fake_clock).handle(reader, writer)

        with open(app_config.transcript.directory + "/__1.log", encoding="utf-8") as f:
            assert f.read() == "[2024-05-17T13:45:09+00:00] hello\n"
