"""
Parsing .bot source into theme trees and the flattened state index.
"""

import textwrap

from logic.bot_ast import AnswerTag, GoNowTag, GoTag, ResolvedTarget, ScriptTag
from logic.bot_parser import compile_bot_text, flatten_bot, parse_bot_text


SOURCE = textwrap.dedent("""\
    state: Start
        a: Hello
        a:
            multi line
            answer
        custom: value
        state: Child
            q: $regex<hi>
            script:
                x = 1

                reactions.answer(str(x))
            go: ../Other
    state: Other
        a: other
        go!: /Start
        buttons:
            "Yes" -> Start
            No
""")


def _snapshot(bot):
    return {
        theme: {path: (s.tags, dict(s.fields), s.buttons) for path, s in t.states.items()}
        for theme, t in bot.themes.items()
    }


def test_states_are_flattened_with_nested_paths():
    bot, errors = compile_bot_text(SOURCE)

    assert errors == []
    assert list(bot.themes) == ["/"]
    assert list(bot.themes["/"].states) == ["/Start", "/Start/Child", "/Other"]


def test_tags_keep_authored_order():
    bot, _ = compile_bot_text(SOURCE)
    start = bot.get_state(ResolvedTarget("/", "/Start"))

    assert start.tags[0] == AnswerTag("Hello")
    assert isinstance(start.tags[1], AnswerTag)
    assert [line.strip() for line in start.tags[1].text.split("\n")] == ["multi line", "answer"]
    assert start.fields["custom"] == "value"

    other = bot.get_state(ResolvedTarget("/", "/Other"))
    assert other.tags == (AnswerTag("other"), GoNowTag("/Start"))
    assert other.go_now == "/Start"
    assert other.buttons == '"Yes" -> Start\nNo'


def test_script_block_is_literal_and_dedented():
    bot, _ = compile_bot_text(SOURCE)
    child = bot.get_state(ResolvedTarget("/", "/Start/Child"))

    script, go = child.tags
    assert isinstance(script, ScriptTag)
    assert script.body == "\nx = 1\n\nreactions.answer(str(x))\n"
    assert go == GoTag("../Other")
    assert child.q == "$regex<hi>"
    assert child.go == "../Other"


def test_flattening_is_idempotent():
    first, _ = compile_bot_text(SOURCE)
    second, _ = compile_bot_text(SOURCE)
    assert _snapshot(first) == _snapshot(second)

    tree, _ = parse_bot_text(SOURCE)
    assert _snapshot(flatten_bot([tree])) == _snapshot(flatten_bot([tree]))


def test_themes_are_normalized_and_reopened():
    source = textwrap.dedent("""\
        state: Start
            a: root
        theme: Support
        state: Help
            a: help
        theme: /
        state: Later
            a: later
    """)
    bot, errors = compile_bot_text(source)

    assert errors == []
    assert set(bot.themes) == {"/", "/Support"}
    assert list(bot.themes["/"].states) == ["/Start", "/Later"]
    assert list(bot.themes["/Support"].states) == ["/Help"]


def test_duplicate_state_later_definition_wins():
    first, _ = parse_bot_text("state: Start\n    a: one\n", "one.bot")
    second, _ = parse_bot_text("state: Start\n    a: two\n", "two.bot")
    bot = flatten_bot([first, second])

    assert bot.get_state(ResolvedTarget("/", "/Start")).answers == ["two"]


def test_problems_are_reported_not_raised():
    source = textwrap.dedent("""\
        a: orphan
        state: Start
            q: $regex<(unclosed>
            q!: plain words
            script: x = (
            just some text
    """)
    bot, errors = compile_bot_text(source)
    messages = [e.message for e in errors]

    assert bot.has_state(ResolvedTarget("/", "/Start"))
    assert any("outside of a state" in m for m in messages)
    assert any("Invalid regex" in m for m in messages)
    assert any("not a $regex" in m for m in messages)
    assert any("Script syntax error" in m for m in messages)
    assert any("Unrecognized line" in m for m in messages)
    assert all(e.source_name == "<string>" for e in errors)


def test_inline_buttons_and_repeated_blocks_append():
    source = textwrap.dedent("""\
        state: Start
            buttons: First
            buttons:
                Second -> /Start
    """)
    bot, errors = compile_bot_text(source)

    assert errors == []
    assert bot.get_state(ResolvedTarget("/", "/Start")).buttons == "First\nSecond -> /Start"
