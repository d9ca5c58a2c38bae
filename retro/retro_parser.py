"""
The RetroScript statement parser.

Turns source text into a list of Statement nodes, one per logical line.
Block-taking constructs (`if`, `loop`, `on`) recurse into the parser for
the text between their braces.
"""
import logging
import re
from typing import Any, List, Optional

from retro.retro_datatypes import (
    ParseError, Token, VarRef, Comparison, BinaryOp, CallExpr,
    Statement, Launch, Close, Wait, Set, Print, Emit, On, If, Loop, While,
    Call, Return, Break, Alert, Notify, Focus, Minimize, Maximize, Play,
    Write, Read, Mkdir, Delete, GenericCommand, Block,
)
from retro.retro_lexer import (
    QUOTES, strip_comment, find_unquoted, split_statements, tokenize, find_block,
)

logger = logging.getLogger("retro.parser")

NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
VAR_RE = re.compile(r"\$\w+")

# Scanned in this order; the first operator found wins.
CONDITION_OPERATORS = ('==', '!=', '>=', '<=', '>', '<', '&&', '||')


def parse_value(text: Any) -> Any:
    """Convert one raw token into a literal or a VarRef."""
    if text is None:
        return None
    text = str(text).strip()
    if len(text) >= 2 and text[0] in QUOTES and text[-1] == text[0]:
        return text[1:-1]
    if text.startswith('$'):
        return VarRef(text[1:])
    if NUMBER_RE.fullmatch(text):
        return float(text)
    match text.lower():
        case 'true':
            return True
        case 'false':
            return False
        case 'null':
            return None
    return text


class _ArithmeticScanner:
    """Recursive-descent reader for `+ - * / %` over numbers, variables and strings.

    Any bare word makes the whole expression non-arithmetic (returns None), so
    text like `C:/Users/notes.txt` stays a plain string.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def parse(self) -> Optional[Any]:
        node = self._expr()
        self._skip()
        if node is None or self.pos != len(self.text):
            return None
        return node

    def _skip(self):
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _peek(self) -> str:
        self._skip()
        return self.text[self.pos] if self.pos < len(self.text) else ''

    def _expr(self):
        left = self._term()
        while left is not None and self._peek() in ('+', '-'):
            op = self.text[self.pos]
            self.pos += 1
            right = self._term()
            if right is None:
                return None
            left = BinaryOp(op, left, right)
        return left

    def _term(self):
        left = self._factor()
        while left is not None and self._peek() in ('*', '/', '%'):
            op = self.text[self.pos]
            self.pos += 1
            right = self._factor()
            if right is None:
                return None
            left = BinaryOp(op, left, right)
        return left

    def _factor(self):
        ch = self._peek()
        if not ch:
            return None
        if ch == '(':
            self.pos += 1
            inner = self._expr()
            if inner is None or self._peek() != ')':
                return None
            self.pos += 1
            return inner
        if ch in QUOTES:
            end = self.text.find(ch, self.pos + 1)
            if end < 0:
                return None
            value = self.text[self.pos + 1:end]
            self.pos = end + 1
            return value
        m = VAR_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return VarRef(m.group()[1:])
        m = NUMBER_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return float(m.group())
        return None


class Parser:
    """Parses RetroScript source into Statement nodes."""

    def __init__(self):
        self._dispatch = {
            'launch': self._parse_launch, 'open': self._parse_launch,
            'close': self._parse_close,
            'wait': self._parse_wait, 'sleep': self._parse_wait,
            'set': self._parse_set,
            'print': self._parse_print, 'log': self._parse_print,
            'emit': self._parse_emit,
            'on': self._parse_on,
            'if': self._parse_if,
            'loop': self._parse_loop, 'repeat': self._parse_loop,
            'call': self._parse_call,
            'return': self._parse_return,
            'break': self._parse_break,
            'alert': self._parse_message,
            'notify': self._parse_message,
            'focus': self._parse_window, 'minimize': self._parse_window, 'maximize': self._parse_window,
            'play': self._parse_play,
            'write': self._parse_write,
            'read': self._parse_read,
            'mkdir': self._parse_mkdir,
            'delete': self._parse_delete, 'rm': self._parse_delete,
        }

    # --- Entry points ---

    def parse(self, source: str) -> List[Statement]:
        """Parse a whole script. ParseErrors carry the 1-based line number."""
        statements: List[Statement] = []
        for line_no, raw in enumerate(source.splitlines(), start=1):
            line = strip_comment(raw).strip()
            if not line:
                continue
            try:
                statement = self.parse_line(line, line_no)
            except ParseError as e:
                if not e.line:
                    e.line = line_no
                raise
            if statement is not None:
                statements.append(statement)
        return statements

    def parse_line(self, line: str, line_no: int = 0) -> Optional[Statement]:
        parts = split_statements(line)
        if not parts:
            return None
        if len(parts) > 1:
            inner = [self.parse_line(p, line_no) for p in parts]
            return Block(tuple(s for s in inner if s is not None), line=line_no)
        line = parts[0]

        tokens = tokenize(line)
        if not tokens:
            return None
        keyword = tokens[0].lower() if not tokens[0].quoted else ''
        handler = self._dispatch.get(keyword)
        if handler is not None:
            return handler(tokens, line, line_no)
        if '=' in line:
            return self._parse_assignment(line, line_no)
        return GenericCommand(str(tokens[0]), tuple(str(t) for t in tokens[1:]), line=line_no)

    def parse_body(self, text: str, line_no: int) -> tuple:
        """Parse the text between a block's braces into a statement tuple."""
        body = []
        for part in split_statements(text):
            statement = self.parse_line(part, line_no)
            if statement is not None:
                body.append(statement)
        return tuple(body)

    # --- Values, conditions, expressions ---

    def parse_condition(self, text: str) -> Any:
        text = text.strip()
        for op in CONDITION_OPERATORS:
            idx = find_unquoted(text, op)
            if idx >= 0:
                left = text[:idx]
                right = text[idx + len(op):]
                return Comparison(op, self.parse_operand(left), self.parse_operand(right))
        return self.parse_operand(text)

    def parse_operand(self, text: str) -> Any:
        text = text.strip()
        node = _ArithmeticScanner(text).parse()
        if isinstance(node, BinaryOp):
            return node
        return parse_value(text)

    def parse_expression(self, text: str, line_no: int = 0) -> Any:
        """Right-hand side of `set`: a call, an arithmetic expression or a value."""
        text = text.strip()
        tokens = tokenize(text)
        if tokens and not tokens[0].quoted and tokens[0].lower() == 'call':
            if len(tokens) < 2:
                raise ParseError("call requires a function name", line_no)
            return CallExpr(str(tokens[1]), tuple(parse_value(t.raw) for t in tokens[2:]))
        return self.parse_operand(text)

    # --- Helpers ---

    @staticmethod
    def _rest(line: str) -> str:
        """The line with its leading keyword removed."""
        pieces = line.split(None, 1)
        return pieces[1] if len(pieces) > 1 else ''

    @staticmethod
    def _require(tokens: List[Token], count: int, message: str, line_no: int):
        if len(tokens) < count:
            raise ParseError(message, line_no)

    @staticmethod
    def _pairs(tokens: List[Token]) -> dict:
        out = {}
        for tok in tokens:
            idx = find_unquoted(tok.raw, '=')
            if idx > 0:
                out[tok.raw[:idx]] = parse_value(tok.raw[idx + 1:])
        return out

    def _block(self, line: str, start: int, keyword: str, line_no: int):
        try:
            found = find_block(line, start)
        except ParseError as e:
            e.line = line_no
            raise
        if found is None:
            raise ParseError(f"{keyword} requires a {{ ... }} body", line_no)
        return found

    def _discard_tail(self, tail: str, line_no: int):
        if tail.strip():
            logger.warning("line %d: ignoring text after block: %r", line_no, tail.strip())

    # --- Statement parsers ---

    def _parse_launch(self, tokens, line, line_no):
        self._require(tokens, 2, "launch requires an application id", line_no)
        params = {}
        lowered = [t.lower() if not t.quoted else None for t in tokens]
        if 'with' in lowered[2:]:
            params = self._pairs(tokens[lowered.index('with', 2) + 1:])
        return Launch(parse_value(tokens[1].raw), params, line=line_no)

    def _parse_close(self, tokens, line, line_no):
        target = parse_value(tokens[1].raw) if len(tokens) > 1 else None
        return Close(target, line=line_no)

    def _parse_wait(self, tokens, line, line_no):
        duration = parse_value(tokens[1].raw) if len(tokens) > 1 else None
        return Wait(duration, line=line_no)

    def _parse_set(self, tokens, line, line_no):
        return self._parse_assignment(self._rest(line), line_no)

    def _parse_assignment(self, text, line_no):
        idx = find_unquoted(text, '=')
        if idx < 0:
            raise ParseError("set expects '$name = value'", line_no)
        name = text[:idx].strip()
        if name.startswith('$'):
            name = name[1:]
        if not name:
            raise ParseError("set requires a variable name", line_no)
        return Set(name, self.parse_expression(text[idx + 1:], line_no), line=line_no)

    def _parse_print(self, tokens, line, line_no):
        return Print(" ".join(tokens[1:]), line=line_no)

    def _parse_emit(self, tokens, line, line_no):
        self._require(tokens, 2, "emit requires an event name", line_no)
        return Emit(str(tokens[1]), self._pairs(tokens[2:]), line=line_no)

    def _parse_on(self, tokens, line, line_no):
        open_idx, close_idx = self._block(line, 0, "on", line_no)
        event_name = line[2:open_idx].strip()
        if not event_name:
            raise ParseError("on requires an event name", line_no)
        self._discard_tail(line[close_idx + 1:], line_no)
        body = self.parse_body(line[open_idx + 1:close_idx], line_no)
        return On(event_name, body, line=line_no)

    def _parse_if(self, tokens, line, line_no):
        open_idx, close_idx = self._block(line, 0, "if", line_no)
        head = line[2:open_idx].strip()
        head = re.sub(r'(^|\s)then$', '', head, flags=re.IGNORECASE).strip()
        if not head:
            raise ParseError("if requires a condition", line_no)
        then_body = self.parse_body(line[open_idx + 1:close_idx], line_no)

        else_body: tuple = ()
        tail = line[close_idx + 1:].strip()
        if re.match(r'else\b', tail, flags=re.IGNORECASE):
            rest = tail[4:].strip()
            if re.match(r'if\b', rest, flags=re.IGNORECASE):
                chained = self.parse_line(rest, line_no)
                else_body = (chained,) if chained is not None else ()
            else:
                e_open, e_close = self._block(rest, 0, "else", line_no)
                else_body = self.parse_body(rest[e_open + 1:e_close], line_no)
                self._discard_tail(rest[e_close + 1:], line_no)
        else:
            self._discard_tail(tail, line_no)
        return If(self.parse_condition(head), then_body, else_body, line=line_no)

    def _parse_loop(self, tokens, line, line_no):
        self._require(tokens, 2, "loop requires a count or 'while <condition>'", line_no)
        open_idx, close_idx = self._block(line, 0, "loop", line_no)
        head = self._rest(line[:open_idx]).strip()
        self._discard_tail(line[close_idx + 1:], line_no)
        body = self.parse_body(line[open_idx + 1:close_idx], line_no)

        if re.match(r'while\b', head, flags=re.IGNORECASE):
            condition = head[5:].strip()
            if not condition:
                raise ParseError("loop while requires a condition", line_no)
            return While(self.parse_condition(condition), body, line=line_no)

        count = parse_value(head)
        if not isinstance(count, (float, VarRef)):
            raise ParseError(f"loop count must be a number, got {head!r}", line_no)
        return Loop(count, body, line=line_no)

    def _parse_call(self, tokens, line, line_no):
        self._require(tokens, 2, "call requires a function name", line_no)
        return Call(str(tokens[1]), tuple(parse_value(t.raw) for t in tokens[2:]), line=line_no)

    def _parse_return(self, tokens, line, line_no):
        rest = self._rest(line)
        value = self.parse_expression(rest, line_no) if rest.strip() else None
        return Return(value, line=line_no)

    def _parse_break(self, tokens, line, line_no):
        return Break(line=line_no)

    def _parse_message(self, tokens, line, line_no):
        kind = Alert if tokens[0].lower() == 'alert' else Notify
        return kind(" ".join(tokens[1:]), line=line_no)

    def _parse_window(self, tokens, line, line_no):
        keyword = tokens[0].lower()
        self._require(tokens, 2, f"{keyword} requires a window id", line_no)
        kind = {'focus': Focus, 'minimize': Minimize, 'maximize': Maximize}[keyword]
        return kind(parse_value(tokens[1].raw), line=line_no)

    def _parse_play(self, tokens, line, line_no):
        self._require(tokens, 2, "play requires a sound name", line_no)
        return Play(parse_value(tokens[1].raw), line=line_no)

    def _parse_write(self, tokens, line, line_no):
        positions = [i for i, t in enumerate(tokens) if i > 0 and not t.quoted and t.lower() == 'to']
        if not positions or positions[0] + 1 >= len(tokens):
            raise ParseError("write expects 'write <content> to <path>'", line_no)
        to_idx = positions[0]
        content = parse_value(" ".join(t.raw for t in tokens[1:to_idx]))
        return Write(content, parse_value(tokens[to_idx + 1].raw), line=line_no)

    def _parse_read(self, tokens, line, line_no):
        self._require(tokens, 2, "read requires a path", line_no)
        var_name = "result"
        lowered = [t.lower() if not t.quoted else None for t in tokens]
        if 'into' in lowered[2:]:
            idx = lowered.index('into', 2)
            if idx + 1 >= len(tokens):
                raise ParseError("read ... into requires a variable name", line_no)
            var_name = str(tokens[idx + 1]).lstrip('$')
        return Read(parse_value(tokens[1].raw), var_name, line=line_no)

    def _parse_mkdir(self, tokens, line, line_no):
        self._require(tokens, 2, "mkdir requires a path", line_no)
        return Mkdir(parse_value(tokens[1].raw), line=line_no)

    def _parse_delete(self, tokens, line, line_no):
        self._require(tokens, 2, f"{tokens[0].lower()} requires a path", line_no)
        return Delete(parse_value(tokens[1].raw), line=line_no)
