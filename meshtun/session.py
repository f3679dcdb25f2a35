"""One operator session: splits command lines and dispatches them to commands."""

from __future__ import annotations

import shlex
import threading

from meshtun.commands import (
    Command,
    CommandRegistry,
    StringWriter,
    execute_command,
    wants_help,
)


class Session:
    """A session with its own copy of the commands, plus ``logout``."""

    def __init__(self, registry: CommandRegistry) -> None:
        self.commands = registry.copy()
        self._closed = threading.Event()
        self.commands.register(
            Command(
                name="logout",
                short_description="Ends the current session",
                callback=lambda _flags, _args, _writer: self.close(),
            )
        )

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the session is closed; return whether it was."""
        return self._closed.wait(timeout)

    def dispatch(self, line: str, writer: StringWriter) -> None:
        """Run the command on ``line``, writing its output to ``writer``.

        A line that cannot be split is ignored. An empty line lists the
        commands; an unknown command is reported and the commands listed.
        """
        try:
            args = shlex.split(line)
        except ValueError:
            return

        if not args:
            self.commands.dump(writer)
            return

        command = self.commands.lookup(args[0])
        if command is None:
            writer.write_line(f"did not understand: {line}")
            self.commands.dump(writer)
            return

        if wants_help(args):
            self.dispatch(f"help {command.name}", writer)
            return

        execute_command(command, args[1:], writer)

    def complete(self, line: str) -> tuple[str | None, list[str]]:
        """Complete a command name.

        Returns the completed line (the name and a space) when exactly one
        command matches, else None, together with the sorted matching names.
        """
        candidates = self.commands.match(line)
        if len(candidates) == 1:
            return candidates[0] + " ", candidates
        return None, candidates

    def close(self) -> None:
        """End the session."""
        self._closed.set()