import asyncio

import pytest

from retro import EngineConfig, ScriptEngine


def make_engine(**kwargs):
    kwargs.setdefault("config", EngineConfig())
    return ScriptEngine(**kwargs)


def stdout(res):
    return [e['message'] for e in res.side_effects if e['topics'] == ['stdout']]


@pytest.mark.asyncio
async def test_handler_runs_while_script_waits():
    engine = make_engine()
    task = asyncio.create_task(engine.run("on ping { print pong }; wait 30; print done"))
    await asyncio.sleep(0.01)
    await engine.bus.emit('ping')
    res = await task
    assert res.success, res.error_message
    assert stdout(res) == ["pong", "done"]


@pytest.mark.asyncio
async def test_handler_binds_event_payload():
    engine = make_engine()
    await engine.run("on greet { set $got = $event }")
    await engine.bus.emit('greet', {'name': 'Ada'})
    assert engine.get_variable('got') == {'name': 'Ada'}


@pytest.mark.asyncio
async def test_non_dict_payload_is_wrapped_by_the_bus():
    engine = make_engine()
    await engine.run("on tick { set $got = $event }")
    await engine.bus.emit('tick', 7)
    assert engine.get_variable('got') == {'data': 7}


@pytest.mark.asyncio
async def test_subscriptions_persist_after_run_until_cleanup():
    engine = make_engine()
    await engine.run("set $n = 0\non tick { set $n = $n + 1 }")
    for _ in range(3):
        await engine.bus.emit('tick')
    assert engine.get_variable('n') == 3.0
    assert engine.subscriptions[0].event_name == 'tick'

    engine.cleanup()
    assert engine.bus.listener_count('tick') == 0
    await engine.bus.emit('tick')
    assert engine.get_variable('n') is None


@pytest.mark.asyncio
async def test_failing_handler_reports_script_error():
    engine = make_engine()
    errors = []
    engine.bus.on('script:error', errors.append)
    res = await engine.run("print ready\non boom { call nosuch }")
    assert res.success
    await engine.bus.emit('boom')
    assert len(errors) == 1
    assert errors[0]['error'] == "Unknown function: nosuch"
    assert errors[0]['line'] == 2
    assert errors[0]['scriptId'] == res.script_id


@pytest.mark.asyncio
async def test_emit_reaches_bus_listeners():
    engine = make_engine()
    received = []
    engine.bus.on('game:score', received.append)
    res = await engine.run("set $pts = 10\nemit game:score points=$pts player=one")
    assert received == [{'points': 10.0, 'player': 'one'}]
    assert res.value == {'event': 'game:score', 'payload': {'points': 10.0, 'player': 'one'}}


@pytest.mark.asyncio
async def test_handler_respects_stop():
    engine = make_engine()
    await engine.run("on tick { print a; wait 20; print b }")
    firing = asyncio.create_task(engine.bus.emit('tick'))
    await asyncio.sleep(0.005)
    engine.stop()
    await firing
    names = [e['payload'].get('message') for e in engine.bus.get_event_log() if e['name'] == 'script:output']
    assert names == ['a']


@pytest.mark.asyncio
async def test_wildcard_subscription():
    engine = make_engine()
    await engine.run("set $seen = 0\non window:* { set $seen = $seen + 1 }")
    await engine.bus.emit('window:open', {'id': 'w1'})
    await engine.bus.emit('window:close', {'id': 'w1'})
    await engine.bus.emit('app:launch')
    assert engine.get_variable('seen') == 2.0


class SyncBus:
    """A host bus that calls handlers directly and never awaits them."""
    def __init__(self):
        self.handlers = {}

    def on(self, name, handler):
        self.handlers.setdefault(name, []).append(handler)
        return lambda: self.handlers[name].remove(handler)

    def emit(self, name, payload=None):
        for handler in list(self.handlers.get(name, ())):
            handler(payload)


@pytest.mark.asyncio
async def test_handlers_run_on_a_synchronous_bus():
    bus = SyncBus()
    engine = make_engine(bus=bus)
    res = await engine.run("set $hits = 0\non ping { set $hits = $hits + 1 }")
    assert res.success, res.error_message
    bus.emit('ping', {'n': 1})
    bus.emit('ping', {'n': 2})
    await asyncio.sleep(0.01)
    assert engine.get_variable('hits') == 2.0
    assert engine.get_variable('event') == {'n': 2}
    assert not engine.events._pending

