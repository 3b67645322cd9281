# module for command assembly

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Command:
    """A finalized simple command. ``args[0]`` is the program when it is non-empty."""
    program: str
    args: tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return self.program == ""

    @property
    def filename(self) -> str:
        # Right-hand side of a redirection: the first word names the file
        return self.args[0] if self.args else ""


EMPTY_COMMAND = Command("", ())


class CommandAssembler:
    """Collects the words seen since the last operator."""

    def __init__(self) -> None:
        self.pending: list[str] = []

    def feed_word(self, text: str) -> None:
        self.pending.append(text)

    def finalize(self) -> Command:
        if not self.pending:
            return EMPTY_COMMAND
        words = self.pending
        self.pending = []
        return Command(words[0], tuple(w for w in words if w))

    def __len__(self) -> int:
        return len(self.pending)
