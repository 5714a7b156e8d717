from __future__ import annotations

import sys
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Callable, Iterable, Sequence, Optional

from clearmind.core.syslog2 import parse_log_level, LOG_NOTICE

VERSION = "ClearMind 0.3.0"


class CLIError(Exception):
    """Raised when CLI arguments are invalid."""


class CLIHelp(Exception):
    """Raised to request help output."""


def matches(token: str, keywords: Sequence[str]) -> bool:
    """prefix match: "se" matches "search" and "serve", first keyword wins"""
    token = token.lower()
    if not token:
        return False
    for word in keywords:
        word = word.lower()
        if word and word.startswith(token):
            return True
    return False


class ArgStream:
    """Utility for consuming command arguments sequentially."""

    def __init__(self, args: Iterable[str]):
        self._args = list(args)
        self._pos = 0

    def has_next(self) -> bool:
        return self._pos < len(self._args)

    def peek(self) -> str | None:
        if not self.has_next():
            return None
        return self._args[self._pos]

    def next(self) -> str:
        if not self.has_next():
            raise CLIError("command line is not complete")
        token = self._args[self._pos]
        self._pos += 1
        return token

    def expect(self, description: str) -> str:
        if not self.has_next():
            raise CLIError(f"expected {description}")
        return self.next()

    def rest(self) -> list[str]:
        """Consume and return every remaining token."""
        tokens = self._args[self._pos:]
        self._pos = len(self._args)
        return tokens

    def find_and_remove(self, token: str) -> bool:
        """Find and remove a token from anywhere in the stream (order-independent)."""
        token_lower = token.lower()
        for i in range(self._pos, len(self._args)):
            if self._args[i].lower() == token_lower:
                self._args.pop(i)
                return True
        return False

    def find_and_remove_next(self, token: str) -> Optional[str]:
        """Find a token and return the value after it, removing both (order-independent)."""
        token_lower = token.lower()
        for i in range(self._pos, len(self._args)):
            if self._args[i].lower() == token_lower:
                self._args.pop(i)
                if i < len(self._args):
                    return self._args.pop(i)
                raise CLIError(f"{token} requires a value")
        return None


@dataclass
class CommandSpec:
    name: str
    parser: Callable[[ArgStream], dict]
    help_text: Optional[str] = None


def parse_flag(stream: ArgStream, name: str) -> bool:
    """Parse a flag (boolean option) from anywhere in the stream."""
    return stream.find_and_remove(name)


def parse_option(stream: ArgStream, name: str) -> Optional[str]:
    """Parse an option with value from anywhere in the stream."""
    return stream.find_and_remove_next(name)


def parse_int_option(stream: ArgStream, name: str, default: Optional[int] = None) -> Optional[int]:
    """Parse an integer option from anywhere in the stream."""
    value = stream.find_and_remove_next(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise CLIError(f"invalid integer value for {name}: {value}")


class CommandParser:
    """Parses ip-style CLI commands with prefix matching."""

    def __init__(self, commands: Sequence[CommandSpec]) -> None:
        self._commands = list(commands)

    def parse(self, argv: Iterable[str]) -> tuple[str, SimpleNamespace]:
        args = list(argv)

        if not args or args[0] in ("-h", "--help", "help"):
            raise CLIHelp()

        if "-v" in args or "--version" in args:
            print(VERSION)
            sys.exit(0)

        # -V <level>: 1..7, ALERT..DEBUG or LOG_ALERT..LOG_DEBUG
        log_level = LOG_NOTICE
        if "-V" in args:
            idx = args.index("-V")
            if idx + 1 >= len(args):
                raise CLIError("-V requires a verbosity level (1-7 or LOG_ERR, LOG_WARNING, LOG_INFO, LOG_DEBUG)")
            value = args.pop(idx + 1)
            args.pop(idx)
            log_level = parse_log_level(value, default=0)
            if not log_level:
                raise CLIError(f"invalid verbosity level: {value}")

        if not args:
            raise CLIHelp()

        stream = ArgStream(args)
        cmd_token = stream.next().lower()
        spec = self._match_command(cmd_token)
        options = spec.parser(stream)

        if stream.has_next():
            raise CLIError(f"unexpected argument: {stream.peek()}")

        ns = SimpleNamespace(**options)
        ns.log_level = log_level
        return spec.name, ns

    def _match_command(self, token: str) -> CommandSpec:
        for spec in self._commands:
            if matches(token, (spec.name,)):
                return spec
        raise CLIError(f"unknown command: {token}")

    def get_help(self, command: Optional[str] = None) -> str:
        """Generate help text for commands."""
        if command:
            for spec in self._commands:
                if matches(command.lower(), (spec.name,)):
                    if spec.help_text:
                        return spec.help_text
                    return f"Command: {spec.name}\n\nNo help available."
            return f"Unknown command: {command}"

        lines = ["ClearMind - journaling backend with semantic retrieval", ""]
        lines.append("Commands:")
        for spec in self._commands:
            lines.append(f"  {spec.help_text.splitlines()[0] if spec.help_text else spec.name}")
        lines.append("")
        lines.append("Use 'clearmind help <command>' for command-specific help")
        lines.append("Global flags: -v (version), -V <level> (verbosity), -h (help)")
        return "\n".join(lines)
