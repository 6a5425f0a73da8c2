"""
Sandboxed script execution: effects, faults, timeouts, helpers and timers.
"""

import asyncio

import pytest

from logic.bot_ast import ResolvedTarget
from logic.script_host import BotScriptError, ScriptHost, TransitionRequest, compile_script
from logic.triggers import Button
from models.context import ConversationContext

KNOWN_TARGETS = {"/Next": ResolvedTarget("/", "/Next")}


@pytest.fixture
def context():
    return ConversationContext()


@pytest.fixture
def host(context):
    host = ScriptHost(context, KNOWN_TARGETS.get, timeout=0.5)
    yield host
    host.close()


def run(host, body):
    return asyncio.run(host.run(body, label="test"))


def test_reactions_collect_answers_buttons_and_transition(host):
    result = run(host, """
reactions.answer("one")
reactions.answer(2)
reactions.buttons(["A", ("Go", "/Next")])
reactions.buttons({"text": "Lost", "transition": "/Nowhere"})
reactions.transition("/Next")
reactions.transition("/Other")
""")

    assert not result.failed
    assert result.answers == ["one", "2"]
    assert result.buttons == [
        Button("A"),
        Button("Go", "/Next", ResolvedTarget("/", "/Next")),
        Button("Lost"),
    ]
    assert result.transition == TransitionRequest("/Next", deferred=False)


def test_deferred_transition_request(host):
    result = run(host, 'reactions.transition({"value": "/Next", "deferred": True})')
    assert result.transition == TransitionRequest("/Next", deferred=True)


def test_bindings_follow_the_live_context(host, context):
    context.input = "hello"
    context.client["name"] = "Ann"
    result = run(host, 'session["seen"] = input\nreactions.answer(client["name"])')

    assert result.answers == ["Ann"]
    assert context.session == {"seen": "hello"}


def test_fault_discards_effects_but_keeps_mutations(host, context):
    result = run(host, """
session["before"] = 1
reactions.answer("lost")
raise RuntimeError("boom")
""")

    assert result.failed
    assert result.answers == []
    assert result.transition is None
    assert context.session["before"] == 1


@pytest.mark.parametrize("body", [
    "import os",
    "from os import path",
    "open('secrets.txt')",
    "__import__('os')",
    "reactions.__class__",
    "class Sneaky:\n    pass",
    "try:\n    x = 1\nexcept:\n    pass",
])
def test_forbidden_constructs_fail(host, body):
    assert run(host, body).failed


@pytest.mark.parametrize("body", [
    "import os",
    "def g():\n    yield 1\ngen = g()\nframe = gen.gi_frame",
    "async def c():\n    pass\nframe = c().cr_frame",
    "frame = reactions.answer.f_back",
    "names = reactions.answer.f_globals",
    "try:\n    1 / 0\nexcept Exception as e:\n    tb = e.with_traceback(None)\n    frame = tb.tb_frame",
    "code = reactions.answer.co_consts",
    "chain = input.mro()",
    "target = reactions._resolve_target",
])
def test_guard_rejects_before_running(body):
    with pytest.raises(BotScriptError):
        compile_script(body, "<guard-test>")


def test_generator_frame_walk_cannot_reach_host_modules(host):
    result = run(host, """
def frames():
    yield gen.gi_frame.f_back
gen = frames()
for frame in gen:
    break
reactions.answer(frame.f_back.f_globals["sys"].modules["os"].getcwd())
""")

    assert result.failed
    assert result.answers == []


def test_sync_script_timeout(host):
    result = run(host, "while True:\n    pass\n")
    assert result.failed


def test_async_script_timeout(host):
    result = run(host, 'await sleep(5)\nreactions.answer("late")')
    assert result.failed
    assert result.answers == []


def test_async_script_spinning_after_await_times_out(host):
    result = run(host, 'await sleep(0)\nwhile True:\n    pass\nreactions.answer("late")')
    assert result.failed
    assert result.answers == []


@pytest.mark.parametrize("delay", [0, 0.01])
def test_top_level_await(host, delay):
    result = run(host, f'value = await sleep({delay}, "done")\nreactions.answer(value)')
    assert result.answers == ["done"]


def test_namespace_persists_between_scripts(host):
    async def scenario():
        await host.run("counter = 41", label="first")
        return await host.run("reactions.answer(counter + 1)", label="second")

    assert asyncio.run(scenario()).answers == ["42"]


def test_helpers_are_callable_from_scripts_and_expressions(host):
    assert host.load_helper("def twice(x):\n    return x * 2\n", "math_helpers.py")
    assert asyncio.run(host.evaluate("twice(21)")) == 42

    assert not host.load_helper("await sleep(0)", "async_top.py")
    assert not host.load_helper("import os", "bad_import.py")
    assert not host.load_helper("raise ValueError('x')", "raises.py")


def test_log_and_json_utilities(host):
    result = run(host, 'log("debug", 1)\nreactions.answer(json.dumps({"a": 1}))')
    assert result.answers == ['{"a": 1}']


def test_set_timeout_fires_and_close_cancels(host, context):
    async def scenario():
        await host.run("def mark():\n    session['ticks'] = session.get('ticks', 0) + 1\nset_timeout(0.01, mark)\n")
        await asyncio.sleep(0.1)
        await host.run("timer = set_interval(0.01, mark)")
        host.close()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert context.session["ticks"] == 1


def test_clear_interval(host, context):
    async def scenario():
        await host.run("""
def tick():
    session['ticks'] = session.get('ticks', 0) + 1
    if session['ticks'] >= 3:
        clear_interval(timer)
timer = set_interval(0.01, tick)
""")
        await asyncio.sleep(0.2)

    asyncio.run(scenario())
    assert context.session["ticks"] == 3
