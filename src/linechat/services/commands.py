"""Command interpreter for the line protocol.

Maps one trimmed input line to a :class:`CommandResult`. The interpreter
performs no I/O; the only impure input is the clock used by ``/time``.
"""

from __future__ import annotations

from linechat.storage.models import CommandResult
from linechat.utils.system import Clock, local_now

SEPARATOR = "\n\n"
EMPTY_PROMPT = "Say something..." + SEPARATOR
GREETING = "Hi there!" + SEPARATOR
GOODBYE = "Goodbye! Closing connection..." + SEPARATOR
TIME_FORMAT = "%H:%M:%S"

ECHO_PREFIX = "/echo "


class CommandInterpreter:
    """Case-insensitive dispatcher for the built-in commands.

    Rules are checked in order and the first match wins: empty line,
    ``hello``, ``bye``/``/quit``, ``/time``, ``/echo <text>``, then the
    default which echoes the line back unchanged.
    """

    def __init__(self, clock: Clock = local_now) -> None:
        self._clock = clock

    def interpret(self, line: str) -> CommandResult:
        text = line.strip()
        keyword = text.lower()

        if not keyword:
            return CommandResult(EMPTY_PROMPT)
        if keyword == "hello":
            return CommandResult(GREETING)
        if keyword == "bye" or keyword.startswith("/quit"):
            return CommandResult(GOODBYE, terminate=True)
        if keyword.startswith("/time"):
            return CommandResult(self._clock().strftime(TIME_FORMAT) + SEPARATOR)
        if keyword.startswith(ECHO_PREFIX):
            # Payload keeps the client's casing
            return CommandResult(text[len(ECHO_PREFIX):] + SEPARATOR)
        return CommandResult(text + SEPARATOR)


command_interpreter = CommandInterpreter()


def interpret(line: str) -> CommandResult:
    """Interpret a line with the default wall clock."""
    return command_interpreter.interpret(line)
