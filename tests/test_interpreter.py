import math
from dataclasses import dataclass

import pytest

from retro.retro_config import EngineConfig
from retro.retro_datatypes import (
    UNDEFINED, Environment, ExecutionHandle, StopFlag, Statement, UnknownFunctionError,
)
from retro.retro_interpreter import (
    Evaluator, truthy, to_number, loose_equals, relational, arithmetic, compare,
)
from retro.retro_parser import Parser


class RecordingEvents:
    def __init__(self):
        self.emitted = []
        self.subscribed = []

    async def emit(self, name, payload=None):
        self.emitted.append((name, payload))

    async def request(self, name, payload=None):
        return None

    def subscribe(self, event_name, body, runner, script_id=None):
        self.subscribed.append((event_name, body, runner, script_id))


class RecordingCollaborators:
    def __init__(self):
        self.calls = []

    async def launch(self, app_id, params):
        self.calls.append(('launch', app_id, params))
        return {'success': True}

    async def close(self, target=None):
        self.calls.append(('close', target))

    async def window(self, action, target):
        self.calls.append((action, target))

    async def dispatch(self, name, args):
        self.calls.append(('dispatch', name, args))
        return {'success': True, 'data': None}

    async def read_file(self, path):
        self.calls.append(('read_file', path))
        return ''


def make_evaluator(**config):
    events = RecordingEvents()
    collaborators = RecordingCollaborators()
    return Evaluator(events, collaborators, EngineConfig(**config)), events, collaborators


def make_handle():
    return ExecutionHandle('test', Environment(), StopFlag(), running=True)


async def run_src(evaluator, src, handle=None):
    handle = handle or make_handle()
    result = await evaluator.execute(Parser().parse(src), handle)
    return result, handle


def stdout(handle):
    return [e['message'] for e in handle.side_effects if e['topics'] == ['stdout']]


# --- Value semantics ---

@pytest.mark.parametrize("value, expected", [
    (0.0, False), (0, False), ("", False), (math.nan, False), (None, False),
    (UNDEFINED, False), (False, False),
    ([], True), ({}, True), ("0", True), (1.0, True), ("false", True),
])
def test_truthy(value, expected):
    assert truthy(value) is expected


def test_to_number():
    assert to_number("42") == 42.0
    assert to_number("  ") == 0.0
    assert to_number(None) == 0.0
    assert to_number(True) == 1.0
    assert math.isnan(to_number("abc"))
    assert math.isnan(to_number(UNDEFINED))
    assert to_number("-Infinity") == -math.inf


def test_loose_equals():
    assert loose_equals(1.0, "1")
    assert loose_equals(2, 2.0)
    assert loose_equals("abc", "abc")
    assert loose_equals(None, UNDEFINED)
    assert not loose_equals(None, 0.0)
    assert loose_equals(True, 1.0)
    assert loose_equals("1", True)
    assert not loose_equals(math.nan, math.nan)


def test_relational():
    assert relational('<', 'apple', 'banana')
    assert relational('>', '10', 9.0)
    assert not relational('<', 'x', 1.0)
    assert relational('>=', 3.0, 3)


def test_arithmetic():
    assert arithmetic('+', 20.0, 6.0) == 26.0
    assert arithmetic('+', 'a', 1.0) == 'a1'
    assert arithmetic('+', 'n=', None) == 'n=null'
    assert arithmetic('-', '10', 4.0) == 6.0
    assert arithmetic('/', 20.0, 6.0) == pytest.approx(3.3333333)
    assert arithmetic('/', 1.0, 0.0) == math.inf
    assert arithmetic('/', -1.0, 0.0) == -math.inf
    assert math.isnan(arithmetic('/', 0.0, 0.0))
    assert arithmetic('%', -7.0, 3.0) == -1.0
    assert math.isnan(arithmetic('%', 1.0, 0.0))


def test_logical_operators_return_operands():
    assert compare('&&', 0.0, 5.0) == 0.0
    assert compare('&&', 1.0, 5.0) == 5.0
    assert compare('||', 0.0, 'x') == 'x'
    assert compare('!=', 1.0, 2.0) is True


# --- Evaluator ---

@pytest.mark.asyncio
async def test_sum_prints_26_and_division_is_not_truncated():
    evaluator, events, _ = make_evaluator()
    _, handle = await run_src(evaluator, "set $a=20; set $b=6; set $sum=$a+$b; print $sum\nset $q=$a/$b; print $q")
    out = stdout(handle)
    assert out[0] == "26"
    assert out[1].startswith("3.333")
    assert ('script:output', {'message': '26'}) in events.emitted


@pytest.mark.asyncio
async def test_loop_binds_zero_based_index():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, "loop 3 { print $i }")
    assert stdout(handle) == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_break_in_if_body_only_halts_the_if():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, "loop 5 { if $i == 2 then { break }; print $i }")
    assert stdout(handle) == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_break_ends_only_the_enclosing_list():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, "loop 3 { print a; break; print b }\nprint after")
    assert stdout(handle) == ["a", "a", "a", "after"]


@pytest.mark.asyncio
async def test_unresolved_variables_stay_literal():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, "print Hello $missing")
    assert stdout(handle) == ["Hello $missing"]


@pytest.mark.asyncio
async def test_interpolation_formats_values():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, 'set $n = 3\nset $nothing = NULL\nprint "n=$n!" $nothing')
    assert stdout(handle) == ["n=3! null"]


@pytest.mark.asyncio
async def test_return_value_and_scope():
    evaluator, _, _ = make_evaluator()
    result, handle = await run_src(evaluator, "print a\nreturn 5\nprint b")
    assert result == 5.0
    assert stdout(handle) == ["a"]


@pytest.mark.asyncio
async def test_while_reevaluates_condition():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(evaluator, "set $n = 0\nloop while $n < 3 { set $n = $n + 1 }\nprint $n")
    assert stdout(handle) == ["3"]


@pytest.mark.asyncio
async def test_while_iteration_cap():
    evaluator, _, _ = make_evaluator(max_loop_iterations=50)
    with pytest.raises(RuntimeError, match="iteration limit"):
        await run_src(evaluator, "loop while TRUE { set $x = 1 }")


@pytest.mark.asyncio
async def test_if_else_branches():
    evaluator, _, _ = make_evaluator()
    _, handle = await run_src(
        evaluator,
        'set $x = 5\nif $x > 3 then { print big } else { print small }\n'
        'set $name = "bob"\nif $name == bob then { print yes }\n'
        'if $missing then { print never } else { print fallback }'
    )
    assert stdout(handle) == ["big", "yes", "fallback"]


@pytest.mark.asyncio
async def test_stop_flag_halts_before_next_statement():
    evaluator, _, _ = make_evaluator()
    handle = make_handle()
    handle.stop_flag.set()
    result, handle = await run_src(evaluator, "print a", handle)
    assert result is None
    assert stdout(handle) == []


@pytest.mark.asyncio
async def test_wait_uses_default_duration():
    evaluator, _, _ = make_evaluator(default_wait_ms=5)
    result, _ = await run_src(evaluator, "wait")
    assert result == 5
    result, _ = await run_src(evaluator, "wait 0")
    assert result == 0


@pytest.mark.asyncio
async def test_wait_on_unset_variable_uses_default_duration():
    evaluator, _, _ = make_evaluator(default_wait_ms=7)
    result, _ = await run_src(evaluator, "wait $nope")
    assert result == 7
    result, _ = await run_src(evaluator, "set $d = NULL\nwait $d")
    assert result == 7
    result, _ = await run_src(evaluator, "set $d = 2\nwait $d")
    assert result == 2


@pytest.mark.asyncio
async def test_call_unknown_function():
    evaluator, _, _ = make_evaluator()
    with pytest.raises(UnknownFunctionError, match="Unknown function: nope"):
        await run_src(evaluator, "call nope")


@pytest.mark.asyncio
async def test_call_awaits_async_functions_with_resolved_args():
    evaluator, _, _ = make_evaluator()
    handle = make_handle()
    seen = []

    async def add(a, b):
        seen.append((a, b))
        return a + b

    handle.env.define('add', add)
    result, _ = await run_src(evaluator, "set $x = 2\nset $y = call add $x 3\nreturn $y", handle)
    assert result == 5.0
    assert seen == [(2.0, 3.0)]


@pytest.mark.asyncio
async def test_outbound_statements_reach_collaborators():
    evaluator, events, collaborators = make_evaluator()
    await run_src(evaluator, 'set $app = notepad\nlaunch $app with file="a.txt"\nfocus w1\nclose\nfoo 1 $app\nplay ding')
    assert collaborators.calls == [
        ('launch', 'notepad', {'file': 'a.txt'}),
        ('focus', 'w1'),
        ('close', None),
        ('dispatch', 'foo', ['1', 'notepad']),
    ]
    assert ('sound:play', {'type': 'ding'}) in events.emitted


@pytest.mark.asyncio
async def test_emit_resolves_payload_values():
    evaluator, events, _ = make_evaluator()
    result, _ = await run_src(evaluator, "set $lvl = 3\nemit custom:thing level=$lvl who=me missing=$nope")
    assert events.emitted[-1] == ('custom:thing', {'level': 3.0, 'who': 'me', 'missing': None})
    assert result == {'event': 'custom:thing', 'payload': {'level': 3.0, 'who': 'me', 'missing': None}}


@pytest.mark.asyncio
async def test_on_registers_subscription():
    evaluator, events, _ = make_evaluator()
    result, _ = await run_src(evaluator, "on tick { print tock }")
    assert result == {'subscribed': 'tick'}
    assert events.subscribed[0][0] == 'tick'


@pytest.mark.asyncio
async def test_unknown_statement_is_a_logged_no_op(caplog):
    @dataclass(frozen=True)
    class Mystery(Statement):
        pass

    evaluator, _, _ = make_evaluator()
    result = await evaluator.execute_statement(Mystery(), make_handle())
    assert result is None
    assert "Unknown statement type: Mystery" in caplog.text


@pytest.mark.asyncio
async def test_handler_output_goes_to_origin_only_while_it_runs():
    evaluator, events, _ = make_evaluator()
    handle = make_handle()
    await run_src(evaluator, "on tick { print t }", handle)
    _, body, runner, _ = events.subscribed[0]

    await runner(body, {})
    assert stdout(handle) == ["t"]

    handle.running = False
    for _ in range(100):
        await runner(body, {})
    assert stdout(handle) == ["t"]


@pytest.mark.asyncio
async def test_file_statements_reject_unset_paths():
    evaluator, _, _ = make_evaluator()
    for src in ("write x to $nope", "read $nope into $x", "mkdir $nope", "delete $nope"):
        with pytest.raises(ValueError, match="path is not set"):
            await run_src(evaluator, src)
