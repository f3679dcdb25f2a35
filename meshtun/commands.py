"""Named commands that a remote operator can run, with help and prefix lookup."""

from __future__ import annotations

import argparse
import io
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, BinaryIO, TextIO, Union

Stream = Union[BinaryIO, TextIO]

# Dest name for the positional that collects everything after the flags.
_REST = "_remaining_args"


class StringWriter:
    """Writes text and bytes to a stream that may be binary or text."""

    def __init__(self, stream: Stream) -> None:
        self.stream = stream
        self._text = isinstance(stream, io.TextIOBase)

    def write_line(self, text: str) -> None:
        """Write ``text`` followed by a newline."""
        self.write(text + "\n")

    def write(self, text: str) -> None:
        """Write ``text`` as is."""
        if self._text:
            self.stream.write(text)
        else:
            self.stream.write(text.encode("utf-8"))

    def write_bytes(self, data: bytes) -> None:
        """Write raw ``data``."""
        if self._text:
            self.stream.write(bytes(data).decode("utf-8", errors="replace"))
        else:
            self.stream.write(bytes(data))


FlagsFactory = Callable[[], argparse.ArgumentParser]
Callback = Callable[[Union[argparse.Namespace, None], list, StringWriter], Any]


@dataclass
class Command:
    """A command: its name, descriptions, optional flag parser and the callback that runs it.

    ``flags`` builds a fresh parser each time it is called. The callback gets the
    parsed flags (or None), the arguments left after the flags, and the writer.
    """

    name: str
    short_description: str
    callback: Callback
    help: str = ""
    flags: FlagsFactory | None = None


def wants_help(args: Iterable[str]) -> bool:
    """Return True when any argument asks for help with ``-h`` or ``-help``."""
    return any(a in ("-h", "-help") for a in args)


def execute_command(command: Command, args: list[str], writer: StringWriter) -> Any:
    """Parse the command's flags from ``args`` and run its callback.

    Flags are read up to the first argument that is not a flag; what follows is
    passed on to the callback. A flag error is reported on ``writer`` and the
    callback is not run.
    """
    parsed: argparse.Namespace | None = None
    rest = list(args)

    if command.flags is not None:
        parser = command.flags()
        if parser is not None:
            parser.exit_on_error = False
            parser.add_argument(_REST, nargs=argparse.REMAINDER)
            try:
                parsed, extras = parser.parse_known_args(list(args))
            except argparse.ArgumentError as err:
                writer.write_line(str(err))
                return None
            if extras:
                writer.write_line(f"flag provided but not defined: {extras[0]}")
                return None
            rest = list(getattr(parsed, _REST, []) or [])
            delattr(parsed, _REST)

    return command.callback(parsed, rest, writer)


class CommandRegistry:
    """Commands by name. A ``help`` command is always present."""

    def __init__(self) -> None:
        self._commands: dict[str, Command] = {}
        self.register(
            Command(
                name="help",
                short_description="prints available commands or help <command> for specific usage info",
                callback=lambda _flags, args, writer: self.help(args, writer),
            )
        )

    def register(self, command: Command) -> None:
        """Add ``command``, replacing any command of the same name."""
        self._commands[command.name] = command

    def lookup(self, name: str) -> Command | None:
        """Return the command called exactly ``name``, or None."""
        return self._commands.get(name)

    def match(self, prefix: str) -> list[str]:
        """Return the sorted names of commands that start with ``prefix``."""
        return sorted(name for name in self._commands if name.startswith(prefix))

    def all_commands(self) -> list[Command]:
        """Return every command, ordered by name."""
        return [self._commands[name] for name in sorted(self._commands)]

    def dump(self, writer: StringWriter) -> None:
        """Write the list of available commands with their short descriptions."""
        writer.write_line("Available commands:")
        lines = sorted(f"{c.name} - {c.short_description}" for c in self.all_commands())
        writer.write("\n".join(lines) + "\n\n")

    def help(self, args: list[str], writer: StringWriter) -> None:
        """Write the command list, or the help of the command named by ``args[0]``."""
        if not args:
            self.dump(writer)
            return

        command = self.lookup(args[0])
        if command is None:
            writer.write_line("Command not available " + args[0])
            return

        writer.write_line(f"{command.name} - {command.short_description}")
        if command.help:
            writer.write_line(f"  {command.help}")
        if command.flags is not None:
            parser = command.flags()
            if parser is not None:
                parser.prog = command.name
                writer.write(parser.format_help())

    def copy(self) -> CommandRegistry:
        """Return a registry holding the same commands, independent of this one."""
        clone = CommandRegistry()
        clone._commands = dict(self._commands)
        return clone

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)