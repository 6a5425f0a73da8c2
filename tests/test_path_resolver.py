"""
Resolving authored transition targets into (theme, state) pairs.
"""

import pytest

from logic.bot_ast import ResolvedTarget
from logic.path_resolver import PathResolverError, StatePathResolver

SOURCE = """
state: A
    state: B
    state: C
state: Top
theme: Theme2
state: X
"""


@pytest.fixture
def resolver(compile_bot):
    bot, errors = compile_bot(SOURCE)
    assert errors == []
    return StatePathResolver(bot)


@pytest.mark.parametrize("target, current, expected", [
    ("..", "/A/B", ("/", "/A")),
    ("../..", "/A/B", ("/", "/")),
    ("../C", "/A/B", ("/", "/A/C")),
    ("../C/", "/A/B", ("/", "/A/C")),
    ("./D", "/A", ("/", "/A/D")),
    ("B", "/A", ("/", "/A/B")),
    ("Top", "/A", ("/", "/Top")),
    ("/Top", "/A/B", ("/", "/Top")),
    ("/Theme2/X", "/A", ("/Theme2", "/X")),
    ("Missing", "/A", ("/", "/Missing")),
])
def test_resolve_in_root_theme(resolver, target, current, expected):
    assert resolver.resolve(target, current, "/") == ResolvedTarget(*expected)


def test_single_segment_absolute_prefers_root_then_current_theme(resolver):
    assert resolver.resolve("/Top", "/X", "/Theme2") == ResolvedTarget("/", "/Top")
    assert resolver.resolve("/X", "/X", "/Theme2") == ResolvedTarget("/Theme2", "/X")


def test_relative_forms_do_not_check_existence(resolver):
    resolved = resolver.resolve("../Nowhere", "/A/B", "/")
    assert resolved == ResolvedTarget("/", "/A/Nowhere")
    assert not resolver.bot.has_state(resolved)


@pytest.mark.parametrize("target", [None, "", "   ", "/"])
def test_empty_target_resolves_to_none(resolver, target):
    assert resolver.resolve(target, "/A", "/") is None


def test_resolve_existing_raises_for_missing_state(resolver):
    assert resolver.resolve_existing("B", "/A", "/") == ResolvedTarget("/", "/A/B")
    with pytest.raises(PathResolverError) as exc_info:
        resolver.resolve_existing("Missing", "/A", "/")
    assert "Missing" in str(exc_info.value)
