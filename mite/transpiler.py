"""Template transpiler for Mite.

Turns markup with embedded ``<? ... ?>`` code spans into an instruction
sequence: literal bytes to emit and opaque code to paste into the generated
program. The same transpiler handles rendered markdown bodies, front matter
and ``.mite`` template files.

Whitespace handling mirrors what authors expect from code-only lines:
- After a code span, whitespace up to and including the first newline is
  dropped.
- Before a code span, indentation on the span's own line is dropped.
- Literal text that does not touch a code span is kept byte for byte.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from typing import Union

from .runtime import MiteError

CODE_OPEN = "<?"
CODE_CLOSE = "?>"


class TranspileError(MiteError):
    """The template source cannot be transpiled."""


@dataclass(frozen=True)
class EmitLiteral:
    """Emit ``data`` verbatim."""

    data: bytes


@dataclass(frozen=True)
class ExecuteCode:
    """Paste ``source`` into the generated program as statements."""

    source: str


Instruction = Union[EmitLiteral, ExecuteCode]


def _trim_after_code(literal: str) -> tuple[str, bool]:
    """Drop a whitespace-only run ending in the first newline.

    Returns:
        Tuple of (trimmed literal, whether a newline was dropped).
    """
    newline = literal.find("\n")
    if newline >= 0 and not literal[:newline].strip(" \t\r"):
        return literal[newline + 1 :], True
    return literal, False


def _trim_before_code(literal: str, at_line_start: bool) -> str:
    """Drop the indentation in front of a code span on its own line."""
    newline = literal.rfind("\n")
    tail = literal[newline + 1 :]
    if tail.strip(" \t"):
        return literal
    if newline < 0 and not at_line_start:
        return literal
    return literal[: newline + 1]


def _clean_code(text: str, span_start: int, span_end: int) -> str:
    """Dedent a code span, treating its first line as starting at its column."""
    column = span_start - (text.rfind("\n", 0, span_start) + 1)
    code = " " * column + text[span_start:span_end]
    return textwrap.dedent(code).strip()


def transpile(text: str) -> list[Instruction]:
    """Compile markup with embedded code into an instruction sequence.

    Args:
        text: Markup source. Must not contain NUL characters.

    Returns:
        Instructions in source order. Empty literals are never emitted; an
        unterminated ``<?`` runs to the end of the input.
    """
    if "\0" in text:
        raise TranspileError("template source contains a NUL character")

    instructions: list[Instruction] = []
    pos = 0
    after_code = False
    while pos < len(text):
        open_at = text.find(CODE_OPEN, pos)
        literal = text[pos : len(text) if open_at < 0 else open_at]
        at_line_start = pos == 0 or text[pos - 1] == "\n"
        if after_code:
            literal, dropped_newline = _trim_after_code(literal)
            at_line_start = at_line_start or dropped_newline
        if open_at >= 0:
            literal = _trim_before_code(literal, at_line_start)
        if literal:
            instructions.append(EmitLiteral(literal.encode("utf-8")))
        if open_at < 0:
            break

        code_start = open_at + len(CODE_OPEN)
        close_at = text.find(CODE_CLOSE, code_start)
        code_end = len(text) if close_at < 0 else close_at
        code = _clean_code(text, code_start, code_end)
        if code:
            instructions.append(ExecuteCode(code))
        after_code = True
        pos = len(text) if close_at < 0 else close_at + len(CODE_CLOSE)
    return instructions


def replay(instructions: list[Instruction]) -> bytes:
    """Concatenate the literal instructions, ignoring code.

    Useful to inspect what a template emits around its code.
    """
    return b"".join(ins.data for ins in instructions if isinstance(ins, EmitLiteral))
