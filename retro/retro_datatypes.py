"""
Defines the core data types for the RetroScript engine.

This module provides the parsed statement tree, the value and condition
nodes the parser produces, the shared variable Environment, the per-run
ExecutionHandle and the error taxonomy raised by the parser and evaluator.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


# =================================================================
# Errors
# =================================================================

class RetroError(Exception):
    """Base class for errors raised by the engine itself."""
    pass


class ParseError(RetroError):
    """A malformed statement. `line` is the 1-based source line (0 until known)."""
    def __init__(self, message: str, line: int = 0):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self):
        return self.message


class UnknownFunctionError(RetroError):
    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name


# =================================================================
# Tokens and values
# =================================================================

class Token(str):
    """A lexed word. Compares as its unquoted text; keeps the raw source form."""
    def __new__(cls, text: str, raw: Optional[str] = None, quoted: bool = False):
        obj = super().__new__(cls, text)
        obj.raw = text if raw is None else raw
        obj.quoted = quoted
        return obj


class _Undefined:
    """Marker for a variable that has never been bound (distinct from NULL)."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNDEFINED"


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class VarRef:
    """A `$name` reference, resolved against the Environment at evaluation time."""
    name: str


@dataclass(frozen=True)
class Comparison:
    operator: str
    left: Any
    right: Any


@dataclass(frozen=True)
class BinaryOp:
    """Arithmetic on two sub-expressions (`+ - * / %`)."""
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class CallExpr:
    """`call fn args...` used as the right-hand side of an assignment."""
    name: str
    args: Tuple[Any, ...] = ()


# =================================================================
# Statements
# =================================================================

@dataclass(frozen=True)
class Statement:
    line: int = field(default=0, kw_only=True, compare=False)


@dataclass(frozen=True)
class Launch(Statement):
    app_id: Any
    params: Dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Close(Statement):
    target: Any = None


@dataclass(frozen=True)
class Wait(Statement):
    duration: Any = None


@dataclass(frozen=True)
class Set(Statement):
    name: str
    value: Any


@dataclass(frozen=True)
class Print(Statement):
    message: str


@dataclass(frozen=True)
class Emit(Statement):
    event_name: str
    payload: Dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class On(Statement):
    event_name: str
    body: Tuple[Statement, ...] = ()


@dataclass(frozen=True)
class If(Statement):
    condition: Any
    then_body: Tuple[Statement, ...] = ()
    else_body: Tuple[Statement, ...] = ()


@dataclass(frozen=True)
class Loop(Statement):
    count: Any
    body: Tuple[Statement, ...] = ()


@dataclass(frozen=True)
class While(Statement):
    condition: Any
    body: Tuple[Statement, ...] = ()


@dataclass(frozen=True)
class Call(Statement):
    name: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Return(Statement):
    value: Any = None


@dataclass(frozen=True)
class Break(Statement):
    pass


@dataclass(frozen=True)
class Alert(Statement):
    message: str


@dataclass(frozen=True)
class Notify(Statement):
    message: str


@dataclass(frozen=True)
class Focus(Statement):
    target: Any


@dataclass(frozen=True)
class Minimize(Statement):
    target: Any


@dataclass(frozen=True)
class Maximize(Statement):
    target: Any


@dataclass(frozen=True)
class Play(Statement):
    sound: Any


@dataclass(frozen=True)
class Write(Statement):
    content: Any
    path: Any


@dataclass(frozen=True)
class Read(Statement):
    path: Any
    var_name: str = "result"


@dataclass(frozen=True)
class Mkdir(Statement):
    path: Any


@dataclass(frozen=True)
class Delete(Statement):
    path: Any


@dataclass(frozen=True)
class GenericCommand(Statement):
    command: str
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Block(Statement):
    """Statements joined by `;` on one source line."""
    statements: Tuple[Statement, ...] = ()


# =================================================================
# Runtime state
# =================================================================

class Environment:
    """The variable namespace and function table shared by every run of an engine."""

    RESERVED = {"TRUE": True, "FALSE": False, "NULL": None}

    def __init__(self):
        self.variables: Dict[str, Any] = {}
        self.functions: Dict[str, Callable[..., Any]] = {}
        self.seed()

    def seed(self):
        self.variables.update(self.RESERVED)

    def get(self, name: str) -> Any:
        return self.variables.get(name, UNDEFINED)

    def set(self, name: str, value: Any):
        self.variables[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self.variables

    def define(self, name: str, fn: Callable[..., Any]):
        self.functions[name] = fn

    def lookup(self, name: str) -> Optional[Callable[..., Any]]:
        return self.functions.get(name)

    def clear(self):
        self.variables.clear()

    def __repr__(self) -> str:
        return f"<Environment vars={len(self.variables)} functions={len(self.functions)}>"


class StopFlag:
    """Engine-wide cooperative cancellation flag."""
    def __init__(self):
        self.requested = False

    def set(self):
        self.requested = True

    def clear(self):
        self.requested = False

    def is_set(self) -> bool:
        return self.requested


@dataclass
class ExecutionHandle:
    """Bookkeeping for one `run` call (or one firing of an event handler)."""
    script_id: str
    env: Environment
    stop_flag: StopFlag
    running: bool = False
    current_line: int = 0
    side_effects: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def stop_requested(self) -> bool:
        return self.stop_flag.is_set()

    def spawn(self) -> "ExecutionHandle":
        """A sibling handle sharing this one's Environment and stop flag.

        Side effects land in this handle's list only while it is still running;
        once its run has returned they go to a fresh list of their own.
        """
        side_effects = self.side_effects if self.running else []
        return ExecutionHandle(self.script_id, self.env, self.stop_flag, running=True,
                               side_effects=side_effects)


@dataclass
class EventSubscription:
    event_name: str
    body: Tuple[Statement, ...]
    unsubscribe: Callable[[], Any]
    script_id: Optional[str] = None
