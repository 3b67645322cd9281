"""Tokenization utilities for minish.

This module turns a raw input line into the token stream consumed by the
operator state machine in ``ops``. Operators are single characters; every
other run of non-blank characters is a word. A double-quoted span is kept
as part of one word with the quotes removed.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class TokenKind(Enum):
    WORD = "word"
    PIPE = "|"
    IN = "<"
    OUT = ">"
    SEQ = ";"
    GROUP_OPEN = "("
    GROUP_CLOSE = ")"
    END = "end"


# Single-character operators recognized by the lexer
OPERATORS: dict[str, TokenKind] = {
    "|": TokenKind.PIPE,
    "<": TokenKind.IN,
    ">": TokenKind.OUT,
    ";": TokenKind.SEQ,
    "(": TokenKind.GROUP_OPEN,
    ")": TokenKind.GROUP_CLOSE,
}

BLANKS = " \t\r\n"


@dataclass(frozen=True)
class Token:
    """A lexical unit. ``text`` is the literal word, or the operator character."""
    kind: TokenKind
    text: str

    @classmethod
    def of(cls, text: str) -> "Token":
        return cls(OPERATORS.get(text, TokenKind.WORD), text)


END = Token(TokenKind.END, "")


# --- Tokenization ---

def tokenize(line: str) -> list[str]:
    """Split ``line`` into operator and word strings.

    A double quote opens a span that runs to the next double quote (or the
    end of the line); its contents are appended to the word being built and
    the word ends with the closing quote. An empty quoted span still yields
    a word (the empty string).
    """
    out: list[str] = []
    buf: list[str] = []

    def flush() -> None:
        if buf:
            out.append("".join(buf))
            buf.clear()

    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            end = line.find('"', i + 1)
            if end == -1:
                end = n
            buf.append(line[i + 1:end])
            out.append("".join(buf))
            buf.clear()
            i = end + 1
            continue
        if ch in OPERATORS:
            flush()
            out.append(ch)
        elif ch in BLANKS:
            flush()
        else:
            buf.append(ch)
        i += 1
    flush()
    return out


def scan(line: str) -> list[Token]:
    """Tokenize ``line`` into typed tokens terminated by the END sentinel."""
    return [Token.of(text) for text in tokenize(line)] + [END]


# --- Formatting (debug / test aid) ---

def format_tokens(tokens: Iterable[str]) -> str:
    return "\n".join(tokens)
