"""
The RetroScript evaluator.

Walks statement lists produced by the parser, resolving values against the
engine's Environment and handing outbound work to the event and
collaborator bridges. Values follow loose, JavaScript-flavoured rules:
numbers are floats, `+` concatenates when a string is involved and `==`
coerces numeric strings.
"""
import asyncio
import inspect
import logging
import math
import re
from typing import Any, Iterable, Optional

from retro.retro_config import EngineConfig
from retro.retro_datatypes import (
    UNDEFINED, UnknownFunctionError, VarRef, Comparison, BinaryOp, CallExpr,
    ExecutionHandle, Launch, Close, Wait, Set, Print, Emit, On, If, Loop, While,
    Call, Return, Break, Alert, Notify, Focus, Minimize, Maximize, Play,
    Write, Read, Mkdir, Delete, GenericCommand, Block,
)
from retro.retro_printer import display

logger = logging.getLogger("retro.interpreter")

INTERPOLATION_RE = re.compile(r"\$(\w+)")
_NUMERIC_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


# ===================================================================
# Value helpers
# ===================================================================

def truthy(value: Any) -> bool:
    match value:
        case None | False:
            return False
        case float() if math.isnan(value):
            return False
        case int() | float() | str():
            return bool(value)
    if value is UNDEFINED:
        return False
    return True


def to_number(value: Any) -> float:
    match value:
        case None:
            return 0.0
        case bool():
            return 1.0 if value else 0.0
        case int() | float():
            return float(value)
        case str():
            text = value.strip()
            if not text:
                return 0.0
            if _NUMERIC_RE.fullmatch(text):
                return float(text)
            if text in ("Infinity", "+Infinity", "-Infinity"):
                return -math.inf if text.startswith('-') else math.inf
            return math.nan
        case list() | tuple():
            return to_number(display(value))
    return math.nan


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def loose_equals(a: Any, b: Any) -> bool:
    a_nullish = a is None or a is UNDEFINED
    b_nullish = b is None or b is UNDEFINED
    if a_nullish or b_nullish:
        return a_nullish and b_nullish
    if isinstance(a, bool) or isinstance(b, bool):
        if isinstance(a, bool) and isinstance(b, bool):
            return a == b
        return loose_equals(to_number(a), b) if isinstance(a, bool) else loose_equals(a, to_number(b))
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if _is_number(a) and isinstance(b, str):
        return a == to_number(b)
    if isinstance(a, str) and _is_number(b):
        return to_number(a) == b
    if type(a) is type(b):
        return a is b or a == b
    # Container against a primitive compares by printed form.
    if isinstance(a, (list, tuple, dict)) and not isinstance(b, (list, tuple, dict)):
        return loose_equals(display(a), b)
    if isinstance(b, (list, tuple, dict)) and not isinstance(a, (list, tuple, dict)):
        return loose_equals(a, display(b))
    return False


def relational(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        left, right = a, b
    else:
        left, right = to_number(a), to_number(b)
        if math.isnan(left) or math.isnan(right):
            return False
    match op:
        case '>':
            return left > right
        case '<':
            return left < right
        case '>=':
            return left >= right
        case '<=':
            return left <= right
    raise ValueError(f"Unknown relational operator: {op}")


def arithmetic(op: str, a: Any, b: Any) -> Any:
    if op == '+' and any(isinstance(v, (str, list, tuple, dict)) for v in (a, b)):
        return display(a) + display(b)
    x, y = to_number(a), to_number(b)
    match op:
        case '+':
            return x + y
        case '-':
            return x - y
        case '*':
            return x * y
        case '/':
            if y == 0:
                if x == 0 or math.isnan(x):
                    return math.nan
                return math.copysign(math.inf, x) * math.copysign(1.0, y)
            return x / y
        case '%':
            if y == 0 or math.isnan(x) or math.isnan(y) or math.isinf(x):
                return math.nan
            return math.fmod(x, y)
    raise ValueError(f"Unknown arithmetic operator: {op}")


def compare(op: str, a: Any, b: Any) -> Any:
    match op:
        case '==':
            return loose_equals(a, b)
        case '!=':
            return not loose_equals(a, b)
        case '&&':
            return b if truthy(a) else a
        case '||':
            return a if truthy(a) else b
    return relational(op, a, b)


def to_host(value: Any) -> Any:
    """Values handed to collaborators never carry the UNDEFINED marker."""
    return None if value is UNDEFINED else value


# ===================================================================
# Evaluator
# ===================================================================

class Evaluator:
    """Executes statement lists against an ExecutionHandle."""

    def __init__(self, events, collaborators, config: Optional[EngineConfig] = None):
        self.events = events
        self.collaborators = collaborators
        self.config = config or EngineConfig()

    # --- Value resolution ---

    def interpolate(self, text: str, handle: ExecutionHandle) -> str:
        def _sub(m: re.Match) -> str:
            value = handle.env.get(m.group(1))
            return m.group(0) if value is UNDEFINED else display(value)
        return INTERPOLATION_RE.sub(_sub, text)

    def resolve(self, value: Any, handle: ExecutionHandle) -> Any:
        match value:
            case VarRef(name=name):
                return handle.env.get(name)
            case str():
                return self.interpolate(value, handle)
        return value

    async def evaluate(self, expr: Any, handle: ExecutionHandle) -> Any:
        match expr:
            case BinaryOp(op=op, left=left, right=right):
                return arithmetic(op, await self.evaluate(left, handle), await self.evaluate(right, handle))
            case CallExpr(name=name, args=args):
                return await self.call_function(name, args, handle)
            case Comparison(operator=op, left=left, right=right):
                return compare(op, await self.evaluate(left, handle), await self.evaluate(right, handle))
        return self.resolve(expr, handle)

    async def test(self, condition: Any, handle: ExecutionHandle) -> bool:
        if condition is None:
            return False
        return truthy(await self.evaluate(condition, handle))

    async def call_function(self, name: str, args: Iterable[Any], handle: ExecutionHandle) -> Any:
        fn = handle.env.lookup(name)
        if fn is None:
            raise UnknownFunctionError(name)
        resolved = [to_host(await self.evaluate(a, handle)) for a in args]
        logger.debug("call %s %r", name, resolved)
        result = fn(*resolved)
        if inspect.isawaitable(result):
            result = await result
        return result

    # --- Execution ---

    async def execute(self, statements: Iterable[Any], handle: ExecutionHandle) -> Any:
        """Run a statement list. Return and Break end this list only."""
        result = None
        for statement in statements:
            if handle.stop_requested:
                break
            if statement.line:
                handle.current_line = statement.line
            result = await self.execute_statement(statement, handle)
            if isinstance(statement, (Return, Break)):
                break
        return result

    async def execute_statement(self, statement: Any, handle: ExecutionHandle) -> Any:
        match statement:
            case Block(statements=statements):
                return await self.execute(statements, handle)

            case Launch(app_id=app_id, params=params):
                resolved = {k: to_host(self.resolve(v, handle)) for k, v in params.items()}
                return await self.collaborators.launch(to_host(self.resolve(app_id, handle)), resolved)

            case Close(target=target):
                return await self.collaborators.close(to_host(self.resolve(target, handle)))

            case Wait(duration=duration):
                return await self._wait(duration, handle)

            case Set(name=name, value=value):
                result = await self.evaluate(value, handle)
                handle.env.set(name, result)
                return result

            case Print(message=message):
                text = self.interpolate(message, handle)
                self._record(handle, 'stdout', text)
                if self.config.echo_output:
                    print(text)
                await self.events.emit('script:output', {'message': text})
                return text

            case Alert(message=message):
                text = self.interpolate(message, handle)
                self._record(handle, 'alert', text)
                await self.events.emit('dialog:alert', {'message': text})
                return None

            case Notify(message=message):
                text = self.interpolate(message, handle)
                self._record(handle, 'notify', text)
                await self.events.emit('notification:show', {'message': text})
                return None

            case Play(sound=sound):
                await self.events.emit('sound:play', {'type': to_host(self.resolve(sound, handle))})
                return None

            case Emit(event_name=event_name, payload=payload):
                resolved = {k: to_host(await self.evaluate(v, handle)) for k, v in payload.items()}
                await self.events.emit(event_name, resolved)
                return {'event': event_name, 'payload': resolved}

            case On(event_name=event_name, body=body):
                async def _runner(handler_body, event_payload):
                    return await self.run_handler(handler_body, event_payload, handle)
                self.events.subscribe(event_name, body, _runner, handle.script_id)
                return {'subscribed': event_name}

            case If(condition=condition, then_body=then_body, else_body=else_body):
                if await self.test(condition, handle):
                    return await self.execute(then_body, handle)
                if else_body:
                    return await self.execute(else_body, handle)
                return None

            case Loop(count=count, body=body):
                return await self._loop(count, body, handle)

            case While(condition=condition, body=body):
                return await self._while(condition, body, handle)

            case Call(name=name, args=args):
                return await self.call_function(name, args, handle)

            case Return(value=value):
                return await self.evaluate(value, handle) if value is not None else None

            case Break():
                return None

            case Focus(target=target):
                return await self.collaborators.window('focus', to_host(self.resolve(target, handle)))

            case Minimize(target=target):
                return await self.collaborators.window('minimize', to_host(self.resolve(target, handle)))

            case Maximize(target=target):
                return await self.collaborators.window('maximize', to_host(self.resolve(target, handle)))

            case Write(content=content, path=path):
                value = to_host(await self.evaluate(content, handle))
                if not isinstance(value, str):
                    value = display(value)
                target = self._path('write', path, handle)
                await self.collaborators.write_file(target, value)
                return {'written': target}

            case Read(path=path, var_name=var_name):
                content = await self.collaborators.read_file(self._path('read', path, handle))
                handle.env.set(var_name, content)
                return content

            case Mkdir(path=path):
                target = self._path('mkdir', path, handle)
                await self.collaborators.create_directory(target)
                return {'created': target}

            case Delete(path=path):
                target = self._path('delete', path, handle)
                await self.collaborators.delete(target)
                return {'deleted': target}

            case GenericCommand(command=command, args=args):
                return await self.collaborators.dispatch(command, [self.interpolate(a, handle) for a in args])

            case _:
                logger.warning("Unknown statement type: %s", type(statement).__name__)
                return None

    async def run_handler(self, body, payload: Any, origin: ExecutionHandle) -> Any:
        """Run an `on` body for one event firing, binding the payload to `event`."""
        handle = origin.spawn()
        handle.env.set('event', payload)
        try:
            return await self.execute(body, handle)
        except Exception as e:
            logger.exception("event handler in %s failed at line %d", handle.script_id, handle.current_line)
            await self.events.emit('script:error', {
                'scriptId': handle.script_id,
                'error': str(e),
                'line': handle.current_line,
            })
            return None
        finally:
            handle.running = False

    # --- Internals ---

    def _record(self, handle: ExecutionHandle, topic: str, message: str):
        handle.side_effects.append({'topics': [topic], 'message': message})

    def _path(self, keyword: str, path: Any, handle: ExecutionHandle) -> str:
        target = to_host(self.resolve(path, handle))
        if target is None:
            raise ValueError(f"{keyword}: path is not set")
        return target if isinstance(target, str) else display(target)

    async def _wait(self, duration: Any, handle: ExecutionHandle) -> Any:
        ms = self.config.default_wait_ms
        value = to_host(self.resolve(duration, handle)) if duration is not None else None
        if value is not None:
            number = to_number(value)
            if not math.isnan(number):
                ms = max(0.0, number)
        if handle.stop_requested:
            return None
        await asyncio.sleep(ms / 1000)
        if handle.stop_requested:
            return None
        return ms

    async def _loop(self, count: Any, body, handle: ExecutionHandle) -> Any:
        total = to_number(to_host(self.resolve(count, handle)))
        if math.isnan(total):
            return None
        # Only an unbounded count is subject to the iteration cap.
        limit = self.config.max_loop_iterations if math.isinf(total) else None
        result = None
        i = 0
        while i < total and not handle.stop_requested:
            if limit is not None and i >= limit:
                raise RuntimeError("loop: iteration limit exceeded")
            handle.env.set('i', i)
            result = await self.execute(body, handle)
            i += 1
            if i % 100 == 0:
                await asyncio.sleep(0)
        return result

    async def _while(self, condition: Any, body, handle: ExecutionHandle) -> Any:
        result = None
        iterations = 0
        while not handle.stop_requested and await self.test(condition, handle):
            if iterations >= self.config.max_loop_iterations:
                raise RuntimeError("while: iteration limit exceeded")
            result = await self.execute(body, handle)
            iterations += 1
            # Yield periodically so stop() and pending events get a turn.
            if iterations % 100 == 0:
                await asyncio.sleep(0)
        return result
