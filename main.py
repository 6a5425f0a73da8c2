import argparse
import asyncio
import os
import sys

from bot_manager import create_bot_interpreter, load_project
from logic.bot_loader import BotLoadError
from utils.config_utils import DEFAULT_BOT_PATH
from utils.logger import bot_execution_logger, reset_session_id, set_session_id

PROMPT = "> "


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def run_repl(bot_path: str):
    project = load_project(bot_path)
    interpreter = create_bot_interpreter(project)
    token = set_session_id(interpreter.session_id)
    try:
        print(await interpreter.start())
        while True:
            try:
                line = await _read_line(PROMPT)
            except EOFError:
                break
            if line.strip() in ("/quit", "/exit"):
                break
            print(await interpreter.handle_message(line.strip()))
    finally:
        interpreter.close()
        reset_session_id(token)


def run_application(argv=None):
    parser = argparse.ArgumentParser(description="Talk to a bot project from the terminal.")
    parser.add_argument("bot_path", nargs="?", default=DEFAULT_BOT_PATH,
                        help="bot project directory or a single .bot file")
    args = parser.parse_args(argv)

    bot_execution_logger.info(f"Starting bot REPL for {os.path.abspath(args.bot_path)}")
    try:
        asyncio.run(run_repl(args.bot_path))
    except BotLoadError as e:
        bot_execution_logger.error(str(e))
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    bot_execution_logger.info("Bot REPL finished.")


if __name__ == "__main__":
    run_application()
