"""
Line-level lexing for RetroScript.

Everything here works on a single physical line: comments are stripped,
`;`-joined statements are split apart, words are tokenized with quote
awareness, and block bodies are located by brace matching. Nothing here
aggregates continuation lines; a `{ ... }` body must close on the line
that opened it.
"""
from typing import List, Optional, Tuple

from retro.retro_datatypes import ParseError, Token

QUOTES = ('"', "'")


def _scan(text: str):
    """Yield (index, char, in_quotes) while tracking quote state."""
    quote = None
    for i, ch in enumerate(text):
        if quote is None and ch in QUOTES:
            quote = ch
            yield i, ch, True
            continue
        if quote is not None and ch == quote:
            quote = None
            yield i, ch, True
            continue
        yield i, ch, quote is not None


def strip_comment(line: str) -> str:
    """Drop an unquoted `#` and everything after it."""
    for i, ch, quoted in _scan(line):
        if ch == '#' and not quoted:
            return line[:i]
    return line


def find_unquoted(text: str, needle: str, start: int = 0) -> int:
    """Index of the first occurrence of `needle` outside quotes, or -1."""
    for i, ch, quoted in _scan(text):
        if i < start or quoted:
            continue
        if text.startswith(needle, i):
            return i
    return -1


def split_statements(line: str) -> List[str]:
    """Split on `;` that is outside quotes and outside any `{ ... }` body."""
    parts = []
    depth = 0
    last = 0
    for i, ch, quoted in _scan(line):
        if quoted:
            continue
        if ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
        elif ch == ';' and depth <= 0:
            parts.append(line[last:i])
            last = i + 1
    parts.append(line[last:])
    return [p.strip() for p in parts if p.strip()]


def tokenize(line: str) -> List[Token]:
    """Split a line on whitespace, honouring single and double quotes.

    Quote characters are removed from the token text but kept in `Token.raw`,
    so `file="a b"` yields the text `file=a b` and the raw `file="a b"`.
    """
    tokens: List[Token] = []
    text: List[str] = []
    raw: List[str] = []
    quoted = False
    quote = None

    def flush():
        nonlocal quoted
        if raw:
            tokens.append(Token("".join(text), "".join(raw), quoted))
        text.clear()
        raw.clear()
        quoted = False

    for ch in line:
        if quote is None and ch in QUOTES:
            quote = ch
            quoted = True
            raw.append(ch)
        elif quote is not None and ch == quote:
            quote = None
            raw.append(ch)
        elif quote is None and ch.isspace():
            flush()
        else:
            text.append(ch)
            raw.append(ch)
    flush()
    return tokens


def find_block(text: str, start: int = 0) -> Optional[Tuple[int, int]]:
    """Locate the first `{` at or after `start` and its matching `}`.

    Returns (open_index, close_index), or None when there is no `{`.
    Raises ParseError when the braces do not balance on this line.
    """
    open_idx = None
    depth = 0
    for i, ch, quoted in _scan(text):
        if i < start or quoted:
            continue
        if ch == '{':
            if open_idx is None:
                open_idx = i
            depth += 1
        elif ch == '}' and open_idx is not None:
            depth -= 1
            if depth == 0:
                return open_idx, i
    if open_idx is None:
        return None
    raise ParseError("Unbalanced braces: missing '}'")
