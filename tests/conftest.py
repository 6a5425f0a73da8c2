import asyncio
import os
import sys
import textwrap

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Ensure root modules and the backend `app` package can be imported
for path in (ROOT, os.path.join(ROOT, "backend")):
    if path not in sys.path:
        sys.path.insert(0, path)

PIZZA_BOT_PATH = os.path.join(ROOT, "bots", "pizza_bot")


@pytest.fixture
def bot_config():
    """Engine settings independent of the environment."""
    from utils.config_utils import BotConfig
    return BotConfig(
        start_state="/Start",
        not_understood_reply="Sorry, what?",
        script_timeout=2.0,
        max_transition_depth=10,
    )


@pytest.fixture
def compile_bot():
    """Compiles dedented .bot source into a flattened Bot, returning (bot, errors)."""
    from logic.bot_parser import compile_bot_text

    def _compile(source: str, name: str = "test.bot"):
        return compile_bot_text(textwrap.dedent(source), name)
    return _compile


@pytest.fixture
def make_interpreter(compile_bot, bot_config):
    """Factory for interpreters over inline bot source; sessions are closed on teardown."""
    from logic.bot_engine import BotInterpreter
    created = []

    def _make(source: str, config=None, helpers=()):
        bot, _ = compile_bot(source)
        interpreter = BotInterpreter(bot, config or bot_config, helpers=helpers)
        created.append(interpreter)
        return interpreter

    yield _make
    for interpreter in created:
        interpreter.close()


@pytest.fixture
def talk():
    """
    Runs start() (unless start=False) and then each message inside a single
    event loop. Returns the list of replies, start reply first.
    """
    def _talk(interpreter, *messages, start=True):
        async def scenario():
            replies = []
            if start:
                replies.append(await interpreter.start())
            for message in messages:
                replies.append(await interpreter.handle_message(message))
            return replies
        return asyncio.run(scenario())
    return _talk


@pytest.fixture
def pizza_project():
    from logic.bot_loader import load_bot_project
    return load_bot_project(PIZZA_BOT_PATH)
