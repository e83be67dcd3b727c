"""A log sink that writes plain lines into a shared text buffer."""

from __future__ import annotations

import io
from typing import Any, Optional

DBG = 1
TRC = 2


def _format_values(values: tuple[Any, ...]) -> str:
    return "[" + " ".join(str(value) for value in values) + "]"


class BufferSink:
    """Writes every record, at any level, into a text buffer."""

    def __init__(self, buffer: Optional[io.StringIO] = None, name: str = "") -> None:
        self.buffer = buffer if buffer is not None else io.StringIO()
        self.name = name

    def enabled(self, level: int) -> bool:
        """Every level is recorded while the buffer is still open."""
        return not self.buffer.closed

    def info(self, msg: str, *args: Any) -> None:
        """Record a message with optional key/value pairs."""
        self.buffer.write(f"{self.name} {msg} {_format_values(args)}\n")

    def error(self, err: BaseException, msg: str, *args: Any) -> None:
        """Record an error along with a message and key/value pairs."""
        self.buffer.write(f"{self.name} {err} {msg} {_format_values(args)}\n")

    def with_name(self, name: str) -> "BufferSink":
        """Return a sink with ``name`` writing into the same buffer."""
        return BufferSink(self.buffer, name)

    def getvalue(self) -> str:
        """Everything written so far."""
        return self.buffer.getvalue()