"""Per-connection session handler."""

from __future__ import annotations

import asyncio
import logging

from linechat.config import AppConfig
from linechat.services.commands import CommandInterpreter, command_interpreter
from linechat.storage.models import SessionStats
from linechat.storage.transcript import TranscriptSink, open_transcript
from linechat.utils.formatting import format_duration, format_peer, preview
from linechat.utils.system import Clock, local_now

logger = logging.getLogger(__name__)

TIMEOUT_NOTICE = "Connection timed out due to inactivity\n"
LINE_TERMINATOR = b"\n"
ENCODING = "utf-8"


class SessionHandler:
    """Drive the read/interpret/respond loop for accepted connections.

    One handler instance serves every connection; all per-connection state
    lives in the ``handle`` call frame, so concurrent sessions share nothing.
    """

    def __init__(
        self,
        config: AppConfig,
        interpreter: CommandInterpreter = command_interpreter,
        clock: Clock = local_now,
    ) -> None:
        self.config = config
        self.interpreter = interpreter
        self.clock = clock

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Serve one connection until it ends, times out or says goodbye."""
        peer = format_peer(writer.get_extra_info("peername"))
        stats = SessionStats(peer=peer)
        logger.info("Client connected: %s", peer)

        try:
            transcript = open_transcript(self.config.transcript.directory, peer, clock=self.clock)
        except OSError as e:
            logger.error("%s: Error creating transcript: %s", peer, e)
            await self._close(writer, peer)
            return

        try:
            with transcript:
                await self._run(reader, writer, transcript, stats)
        finally:
            await self._close(writer, peer)
            logger.info(
                "Client disconnected: %s (%d messages, %s)",
                peer,
                stats.messages,
                format_duration(stats.elapsed_ms),
            )

    async def _run(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        transcript: TranscriptSink,
        stats: SessionStats,
    ) -> None:
        peer = stats.peer
        timeout = self.config.server.timeout

        while True:
            try:
                raw = await asyncio.wait_for(reader.readuntil(LINE_TERMINATOR), timeout=timeout)
            except asyncio.TimeoutError:
                logger.info("%s: Connection timed out", peer)
                await self._send(writer, peer, TIMEOUT_NOTICE)
                return
            except asyncio.IncompleteReadError as e:
                if e.partial:
                    logger.info("%s: Connection closed mid-line (%d bytes discarded)", peer, len(e.partial))
                else:
                    logger.info("%s: Connection closed by client", peer)
                return
            except asyncio.LimitOverrunError:
                logger.warning("%s: Line exceeds %d bytes, closing", peer, self.config.server.max_line)
                return
            except (ConnectionError, OSError) as e:
                logger.warning("%s: Read error: %s", peer, e)
                return

            message = raw.decode(ENCODING, errors="replace").strip()
            stats.messages += 1
            logger.info("%s >> %s", peer, preview(message))
            try:
                transcript.append(message)
            except OSError as e:
                logger.error("%s: Transcript write error: %s", peer, e)
                return

            result = self.interpreter.interpret(message)
            if not await self._send(writer, peer, result.response):
                return

            if result.terminate:
                await self._half_close(reader, writer, peer)
                return

    async def _send(self, writer: asyncio.StreamWriter, peer: str, text: str) -> bool:
        """Write and flush ``text``. Returns False when the peer is gone."""
        try:
            writer.write(text.encode(ENCODING))
            await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.warning("%s: Write error: %s", peer, e)
            return False
        return True

    async def _half_close(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        peer: str,
    ) -> None:
        """Shut down our send side and wait for the peer to finish reading.

        The peer sees EOF only after every byte already written, so the last
        response is delivered before the socket is torn down. Whatever the
        peer still sends is discarded.
        """
        if not writer.can_write_eof():
            return
        try:
            writer.write_eof()
            await asyncio.wait_for(self._discard_until_eof(reader), timeout=self.config.server.close_grace)
        except asyncio.TimeoutError:
            logger.debug("%s: Peer did not close within %ds", peer, self.config.server.close_grace)
        except (ConnectionError, OSError) as e:
            logger.debug("%s: Error during half-close: %s", peer, e)

    async def _discard_until_eof(self, reader: asyncio.StreamReader) -> None:
        while await reader.read(self.config.server.max_line):
            pass

    async def _close(self, writer: asyncio.StreamWriter, peer: str) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("%s: Error closing connection: %s", peer, e)
