import inspect
import itertools
import logging
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Literal, Optional

from retro.retro_bridge import EventBridge, CollaboratorBridge, resolve_awaitable
from retro.retro_bus import EventBus, CommandBus
from retro.retro_config import EngineConfig
from retro.retro_datatypes import (
    UNDEFINED, Environment, StopFlag, ExecutionHandle, ParseError, EventSubscription,
)
from retro.retro_fs import VirtualFileSystem
from retro.retro_interpreter import Evaluator, to_number, to_host, truthy
from retro.retro_parser import Parser
from retro.retro_printer import display

logger = logging.getLogger("retro.runtime")


def retro_api_method(func):
    """A decorator to explicitly mark host methods as callable from scripts."""
    func._is_retro_api = True
    return func


class RetroHost:
    """Base class for Python objects exposed to scripts.

    Methods decorated with @retro_api_method are bound into the engine's
    function table under their camelCase name and shadow builtins.
    """
    engine: Optional["ScriptEngine"] = None

    def attach(self, engine: "ScriptEngine"):
        self.engine = engine


def camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


# ===================================================================
# Builtin helpers
# ===================================================================

def _str(value: Any) -> str:
    return value if isinstance(value, str) else display(to_host(value))


def _int(value: Any, default: int = 0) -> int:
    number = to_number(value)
    if math.isnan(number):
        return default
    if math.isinf(number):
        return (1 << 53) if number > 0 else -(1 << 53)
    return int(number)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return a is b
    return type(a) is type(b) and a == b


def _index(items: list, item: Any, start: int = 0) -> int:
    if start < 0:
        start = max(0, len(items) + start)
    for i in range(start, len(items)):
        if _strict_equals(items[i], item):
            return i
    return -1


def _substring(s: str, start: Any, end: Any = None) -> str:
    length = len(s)
    lo = min(max(_int(start), 0), length)
    hi = length if end is None else min(max(_int(end), 0), length)
    if lo > hi:
        lo, hi = hi, lo
    return s[lo:hi]


def _pad(s: str, length: Any, pad: Any) -> str:
    missing = _int(length) - len(s)
    pad = _str(pad)
    if missing <= 0 or not pad:
        return ''
    return (pad * (missing // len(pad) + 1))[:missing]


def _round_half_up(x: float) -> float:
    return math.floor(x + 0.5)


def _compare(a: Any, b: Any) -> int:
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    x, y = _str(a), _str(b)
    return (x > y) - (x < y)


def _flatten(items: list, depth: int) -> list:
    out = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            out.extend(_flatten(item, depth - 1))
        else:
            out.append(item)
    return out


def _finite(fn: Callable[[float], Any], value: Any) -> Any:
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return number
    return fn(number)


# ===================================================================
# Builtins
# ===================================================================

class StdLib:
    """Python implementations of the builtin script functions.

    Every `_snake_name` method is registered as the camelCase function
    `snakeName`; helpers live at module level so they are not exposed.
    """
    def __init__(self, engine: "ScriptEngine"):
        self.engine = engine

    # --- Math ---
    def _random(self, low=0, high=1):
        lo, hi = to_number(low), to_number(high)
        return math.floor(random.random() * (hi - lo + 1)) + lo

    def _abs(self, x): return abs(to_number(x))
    def _round(self, x): return _finite(_round_half_up, x)
    def _floor(self, x): return _finite(math.floor, x)
    def _ceil(self, x): return _finite(math.ceil, x)

    # --- Time ---
    def _now(self): return int(time.time() * 1000)
    def _time(self): return datetime.now().strftime("%H:%M:%S")
    def _date(self): return datetime.now().strftime("%m/%d/%Y")

    # --- Strings ---
    def _upper(self, s): return _str(s).upper()
    def _lower(self, s): return _str(s).lower()
    def _trim(self, s): return _str(s).strip()
    def _trim_start(self, s): return _str(s).lstrip()
    def _trim_end(self, s): return _str(s).rstrip()

    def _length(self, value):
        if isinstance(value, list):
            return len(value)
        return len(_str(value))

    def _char_at(self, s, index=0):
        s, i = _str(s), _int(index)
        return s[i] if 0 <= i < len(s) else ''

    def _char_code(self, s, index=0):
        s, i = _str(s), _int(index)
        return ord(s[i]) if 0 <= i < len(s) else math.nan

    def _from_char_code(self, *codes): return ''.join(chr(_int(c) & 0xFFFF) for c in codes)
    def _concat(self, *args): return ''.join(_str(a) for a in args)

    def _substr(self, s, start=0, length=None):
        s = _str(s)
        if length is None:
            return _substring(s, start)
        return _substring(s, start, _int(start) + _int(length))

    def _substring(self, s, start=0, end=None): return _substring(_str(s), start, end)

    def _slice(self, value, start=0, end=None):
        seq = value if isinstance(value, list) else _str(value)
        return seq[_int(start):] if end is None else seq[_int(start):_int(end)]

    def _index_of(self, value, search, from_index=0):
        if isinstance(value, list):
            return _index(value, search, _int(from_index))
        return _str(value).find(_str(search), max(0, _int(from_index)))

    def _last_index_of(self, value, search, from_index=None):
        if isinstance(value, list):
            stop = len(value) - 1 if from_index is None else min(_int(from_index), len(value) - 1)
            for i in range(stop, -1, -1):
                if _strict_equals(value[i], search):
                    return i
            return -1
        s, needle = _str(value), _str(search)
        if from_index is None:
            return s.rfind(needle)
        return s.rfind(needle, 0, max(0, _int(from_index)) + len(needle))

    def _contains(self, value, search):
        if isinstance(value, list):
            return _index(value, search) >= 0
        return _str(search) in _str(value)

    def _starts_with(self, s, search): return _str(s).startswith(_str(search))
    def _ends_with(self, s, search): return _str(s).endswith(_str(search))
    def _replace(self, s, search, replacement): return _str(s).replace(_str(search), _str(replacement), 1)

    def _replace_all(self, s, search, replacement):
        s, search, replacement = _str(s), _str(search), _str(replacement)
        if not search:
            return replacement.join(s)
        return s.replace(search, replacement)

    def _split(self, s, separator=''):
        s, separator = _str(s), _str(separator)
        return list(s) if separator == '' else s.split(separator)

    def _join(self, items, separator=''):
        if isinstance(items, list):
            return _str(separator).join('' if i is None else _str(i) for i in items)
        return _str(items)

    def _pad_start(self, s, length, pad=' '):
        s = _str(s)
        return _pad(s, length, pad) + s

    def _pad_end(self, s, length, pad=' '):
        s = _str(s)
        return s + _pad(s, length, pad)

    def _repeat(self, s, count): return _str(s) * max(0, _int(count))

    def _reverse(self, value):
        if isinstance(value, list):
            return list(reversed(value))
        return _str(value)[::-1]

    # --- Arrays ---
    def _count(self, value):
        if isinstance(value, (list, dict)):
            return len(value)
        return len(_str(value))

    def _first(self, items): return items[0] if isinstance(items, list) and items else None
    def _last(self, items): return items[-1] if isinstance(items, list) and items else None

    def _at(self, items, index):
        if isinstance(items, list):
            i = _int(index, -1)
            return items[i] if 0 <= i < len(items) else None
        return None

    def _push(self, items, *values): return [*items, *values] if isinstance(items, list) else items
    def _pop(self, items): return items[-1] if isinstance(items, list) and items else None
    def _shift(self, items): return items[0] if isinstance(items, list) and items else None
    def _unshift(self, items, *values): return [*values, *items] if isinstance(items, list) else items
    def _includes(self, items, item): return isinstance(items, list) and _index(items, item) >= 0
    def _find_index(self, items, item): return _index(items, item) if isinstance(items, list) else -1

    def _find(self, items, item):
        if isinstance(items, list) and _index(items, item) >= 0:
            return item
        return None

    def _sort(self, items):
        return sorted(items, key=cmp_to_key(_compare)) if isinstance(items, list) else items

    def _sort_desc(self, items):
        return sorted(items, key=cmp_to_key(lambda a, b: _compare(b, a))) if isinstance(items, list) else items

    def _unique(self, items):
        if not isinstance(items, list):
            return items
        out: list = []
        for item in items:
            if _index(out, item) < 0:
                out.append(item)
        return out

    def _flatten(self, items, depth=1):
        return _flatten(items, _int(depth, 1)) if isinstance(items, list) else items

    def _range(self, start, end, step=1):
        s, e, st = to_number(start), to_number(end), to_number(step)
        if math.isnan(st) or st == 0:
            st = 1.0
        limit = self.engine.config.max_loop_iterations
        out = []
        i = s
        while (i < e) if st > 0 else (i > e):
            if len(out) >= limit:
                raise ValueError("range: too many elements")
            out.append(i)
            i += st
        return out

    def _fill(self, count, value=None): return [value] * max(0, _int(count))

    def _sum(self, items):
        return sum((to_number(v) for v in items), 0.0) if isinstance(items, list) else 0

    def _avg(self, items):
        if isinstance(items, list) and items:
            return sum(to_number(v) for v in items) / len(items)
        return 0

    def _product(self, items):
        if not isinstance(items, list):
            return 0
        return math.prod((to_number(v) for v in items), start=1.0)

    def _filter(self, items, value):
        return [i for i in items if _strict_equals(i, value)] if isinstance(items, list) else []

    def _reject(self, items, value):
        return [i for i in items if not _strict_equals(i, value)] if isinstance(items, list) else []

    def _map(self, items, operation=None):
        if not isinstance(items, list):
            return []
        match operation:
            case 'double':
                return [to_number(x) * 2 for x in items]
            case 'square':
                return [to_number(x) * to_number(x) for x in items]
            case 'string':
                return [_str(x) for x in items]
            case 'number':
                return [to_number(x) for x in items]
            case 'boolean':
                return [truthy(x) for x in items]
        return items

    def _splice(self, items, start=0, delete_count=None, *values):
        if not isinstance(items, list):
            return items
        copy = list(items)
        lo = _int(start)
        lo = max(len(copy) + lo, 0) if lo < 0 else min(lo, len(copy))
        count = max(0, _int(delete_count)) if delete_count is not None else 0
        copy[lo:lo + count] = values
        return copy

    def _array_concat(self, *arrays):
        out = []
        for a in arrays:
            if isinstance(a, list):
                out.extend(a)
            else:
                out.append(a)
        return out

    # --- System ---
    async def _get_windows(self):
        return await self.engine.events.request('query:windows') or []

    async def _get_apps(self):
        return await self.engine.events.request('query:apps') or []

    def _get_env(self):
        return {
            'platform': 'RetrOS',
            'version': '5.0',
            'language': 'RetroScript',
            'timestamp': self._now(),
        }

    async def _query(self, query_type, payload=None):
        return await self.engine.events.request(f"query:{query_type}", payload if payload is not None else {})

    async def _exec(self, command, payload=None):
        return await self.engine.collaborators.command(command, payload if payload is not None else {})


# ===================================================================
# Script Execution
# ===================================================================

def _source_context(source: str, line: int, radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
    return "\n".join(out)


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    line: int = 0
    script_id: Optional[str] = None
    side_effects: List[Dict] = field(default_factory=list)
    source: Optional[str] = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.status == 'success'

    @property
    def result(self) -> Any:
        return self.value

    @property
    def error(self) -> Optional[str]:
        return self.error_message

    def format_error(self) -> str:
        """Formats an error message with its line and surrounding source, if known."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if not self.line:
            return msg
        out = f"Error on line {self.line}: {msg}"
        context = _source_context(self.source or "", self.line)
        return f"{out}\n{context}" if context else out


class ScriptEngine:
    """Parses and executes RetroScript against a host's services.

    One engine is one logical session: every run shares its Environment,
    its function table and its `on` subscriptions. Collaborators default to
    the in-memory reference implementations.
    """

    _script_counter = itertools.count(1)

    def __init__(self, bus=None, dispatcher=None, fs=None,
                 host_object: Optional[Any] = None, config: Optional[EngineConfig] = None):
        self.config = config if config is not None else EngineConfig.from_env()
        self.bus = bus if bus is not None else EventBus()
        self.dispatcher = dispatcher if dispatcher is not None else CommandBus()
        self.fs = fs if fs is not None else VirtualFileSystem()
        self.host_object = host_object

        self.env = Environment()
        self.stop_flag = StopFlag()
        self.parser = Parser()
        self.events = EventBridge(self.bus)
        self.collaborators = CollaboratorBridge(self.dispatcher, self.fs, self.events)
        self.evaluator = Evaluator(self.events, self.collaborators, self.config)

        self.active_runs: Dict[str, ExecutionHandle] = {}
        self._initialized = False
        self._host_api_names: set = set()
        self._register_builtins()

    # --- Setup ---

    def initialize(self):
        """Seed the reserved variables and bind host API methods. Safe to call twice."""
        self.env.seed()
        if isinstance(self.host_object, RetroHost):
            self.host_object.attach(self)
        self._bind_host_api_methods()
        self._initialized = True
        logger.info("ScriptEngine initialized")

    def _register_builtins(self):
        stdlib = StdLib(self)
        for name, member in inspect.getmembers(stdlib):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                self.env.define(camel_case(name[1:]), member)

    def _bind_host_api_methods(self):
        """Bind @retro_api_method methods of the host into the function table (camelCase)."""
        for name in self._host_api_names:
            self.env.functions.pop(name, None)
        self._host_api_names = set()

        host = self.host_object
        if not host:
            return
        for name, member in inspect.getmembers(host):
            if not callable(member):
                continue
            # Decorator may mark the bound method or the underlying function
            is_api = getattr(member, "_is_retro_api", False)
            if not is_api:
                func = getattr(member, "__func__", None)
                if func is not None:
                    is_api = getattr(func, "_is_retro_api", False)
            if not is_api:
                continue
            script_name = camel_case(name)
            self.env.define(script_name, member)
            self._host_api_names.add(script_name)

    def _next_script_id(self) -> str:
        return f"script_{int(time.time() * 1000)}_{next(self._script_counter)}"

    # --- Execution ---

    async def run(self, source: str, context: Optional[Dict[str, Any]] = None, *,
                  source_name: str = "inline") -> ExecutionResult:
        """The main entry point to execute a script."""
        if not self._initialized:
            self.initialize()
        script_id = self._next_script_id()
        handle = ExecutionHandle(script_id, self.env, self.stop_flag, running=True)
        self.stop_flag.clear()
        self.active_runs[script_id] = handle

        for key, value in (context or {}).items():
            self.env.set(key, value)

        try:
            await self.events.emit('script:execute', {'scriptId': script_id, 'source': source_name})
            statements = self.parser.parse(source)
            logger.debug("%s: parsed %d statements", script_id, len(statements))
            result = to_host(await self.evaluator.execute(statements, handle))
        except Exception as e:
            line = e.line if isinstance(e, ParseError) else handle.current_line
            msg = str(e) or type(e).__name__
            logger.error("%s failed on line %d: %s", script_id, line, msg)
            logger.debug("traceback for %s", script_id, exc_info=True)
            handle.side_effects.append({'topics': ['stderr'], 'message': msg})
            await self.events.emit('script:error', {'scriptId': script_id, 'error': msg, 'line': line})
            return ExecutionResult(
                status='error',
                error_message=msg,
                error_type=type(e).__name__,
                line=line,
                script_id=script_id,
                side_effects=list(handle.side_effects),
                source=source,
            )
        finally:
            handle.running = False
            self.active_runs.pop(script_id, None)

        await self.events.emit('script:complete', {'scriptId': script_id, 'result': result})
        return ExecutionResult(
            status='success',
            value=result,
            line=handle.current_line,
            script_id=script_id,
            side_effects=list(handle.side_effects),
            source=source,
        )

    async def run_file(self, path: str, context: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        """Read a script through the filesystem collaborator and run it."""
        try:
            content = await resolve_awaitable(self.fs.read_file(path))
        except Exception as e:
            msg = f"Failed to load script: {e}"
            logger.error(msg)
            return ExecutionResult(
                status='error',
                error_message=msg,
                error_type=type(e).__name__,
                side_effects=[{'topics': ['stderr'], 'message': msg}],
            )
        return await self.run(content, context, source_name=str(path))

    def stop(self):
        """Ask every in-flight run to halt at its next statement or loop boundary."""
        self.stop_flag.set()
        logger.info("stop requested (%d active runs)", len(self.active_runs))

    @property
    def running(self) -> bool:
        return bool(self.active_runs)

    # --- Variables and functions ---

    def define_function(self, name: str, fn: Callable[..., Any]):
        self.env.define(name, fn)

    def get_variable(self, name: str, default: Any = None) -> Any:
        value = self.env.get(name)
        return default if value is UNDEFINED else value

    def set_variable(self, name: str, value: Any):
        self.env.set(name, value)

    @property
    def subscriptions(self) -> List[EventSubscription]:
        return list(self.events.subscriptions)

    def cleanup(self):
        """Drop every subscription and variable; builtins are restored, defined functions kept."""
        removed = self.events.unsubscribe_all()
        self.env.clear()
        self.env.seed()
        self._register_builtins()
        self._bind_host_api_methods()
        logger.info("cleanup removed %d subscriptions", removed)


__all__ = [
    "ScriptEngine",
    "ExecutionResult",
    "StdLib",
    "RetroHost",
    "retro_api_method",
    "camel_case",
]
