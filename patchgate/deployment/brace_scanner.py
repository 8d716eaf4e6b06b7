# FILE: patchgate/deployment/brace_scanner.py
"""Brace matching over C-family source text.

A small explicit state machine walks the text so that braces inside
string literals, character literals and comments are not counted.
Handled literal forms:

- regular strings "..." with backslash escapes
- character literals '.'
- verbatim strings @"...", $@"...", @$"..." where "" is an escaped quote
- raw strings opened by three or more quotes, closed by a run of at
  least the same length
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ScanState(str, Enum):
    NORMAL = "normal"
    IN_STRING = "in_string"
    IN_CHAR = "in_char"
    IN_VERBATIM_STRING = "in_verbatim_string"
    IN_RAW_STRING = "in_raw_string"
    ESCAPE_PENDING = "escape_pending"
    IN_LINE_COMMENT = "in_line_comment"
    IN_BLOCK_COMMENT = "in_block_comment"


def _quote_run(text: str, index: int) -> int:
    """Number of consecutive '"' characters starting at `index`."""
    end = index
    while end < len(text) and text[end] == '"':
        end += 1
    return end - index


def _has_verbatim_prefix(text: str, quote_index: int) -> bool:
    if quote_index >= 1 and text[quote_index - 1] == "@":
        return True
    return quote_index >= 2 and text[quote_index - 2:quote_index] in ("$@", "@$")


def find_matching_brace(text: str, open_index: int) -> Optional[int]:
    """Index of the brace that closes the one at `open_index`.

    Args:
        text: Source text
        open_index: Index of an opening '{'

    Returns:
        Index of the '}' that brings depth back to zero, or None when
        `open_index` is not a '{' or the text ends first.
    """
    if open_index < 0 or open_index >= len(text) or text[open_index] != "{":
        return None

    state = ScanState.NORMAL
    escape_return = ScanState.IN_STRING
    raw_quote_len = 0
    depth = 0
    i = open_index
    n = len(text)

    while i < n:
        c = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if state is ScanState.NORMAL:
            if c == "/" and nxt == "/":
                state = ScanState.IN_LINE_COMMENT
                i += 2
                continue
            if c == "/" and nxt == "*":
                state = ScanState.IN_BLOCK_COMMENT
                i += 2
                continue
            if c == '"':
                if _has_verbatim_prefix(text, i):
                    state = ScanState.IN_VERBATIM_STRING
                    i += 1
                    continue
                run = _quote_run(text, i)
                if run >= 3:
                    state = ScanState.IN_RAW_STRING
                    raw_quote_len = run
                    i += run
                    continue
                state = ScanState.IN_STRING
            elif c == "'":
                state = ScanState.IN_CHAR
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    return i

        elif state is ScanState.IN_STRING or state is ScanState.IN_CHAR:
            closer = '"' if state is ScanState.IN_STRING else "'"
            if c == "\\":
                escape_return = state
                state = ScanState.ESCAPE_PENDING
            elif c == closer or c == "\n":
                # Unterminated literals end at the line break
                state = ScanState.NORMAL

        elif state is ScanState.ESCAPE_PENDING:
            state = escape_return

        elif state is ScanState.IN_VERBATIM_STRING:
            if c == '"':
                if nxt == '"':
                    i += 2
                    continue
                state = ScanState.NORMAL

        elif state is ScanState.IN_RAW_STRING:
            if c == '"':
                run = _quote_run(text, i)
                if run >= raw_quote_len:
                    state = ScanState.NORMAL
                i += run
                continue

        elif state is ScanState.IN_LINE_COMMENT:
            if c == "\n":
                state = ScanState.NORMAL

        elif state is ScanState.IN_BLOCK_COMMENT:
            if c == "*" and nxt == "/":
                state = ScanState.NORMAL
                i += 2
                continue

        i += 1

    return None
