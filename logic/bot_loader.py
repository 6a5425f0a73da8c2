# File: logic/bot_loader.py
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from logic.bot_ast import Bot
from logic.bot_parser import ParseError, flatten_bot, parse_bot_file
from utils.config_utils import BotConfig, load_bot_config
from utils.logger import bot_execution_logger

BOT_EXTENSION = ".bot"
HELPER_EXTENSION = ".py"


class BotLoadError(Exception):
    def __init__(self, message: str, path: str | None = None, original_exception: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.original_exception = original_exception

    def __str__(self):
        s = f"BotLoadError: {self.message}"
        if self.path:
            s += f" (Path: {self.path})"
        if self.original_exception:
            s += f" Caused by: {type(self.original_exception).__name__}: {self.original_exception}"
        return s


@dataclass
class BotProject:
    bot: Bot
    config: BotConfig
    helpers: List[Tuple[str, str]] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)
    path: str = ""

    @property
    def name(self) -> str:
        return os.path.basename(os.path.normpath(self.path)) if self.path else "<bot>"


def _read_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise BotLoadError("Cannot read file", path=path, original_exception=e) from e


def load_bot_project(path: str | Path, overrides: dict | None = None) -> BotProject:
    """
    Loads a bot project directory (every *.bot file in name order, *.py helper
    files, optional config.json) or a single .bot file.
    """
    path = str(path)
    if os.path.isfile(path):
        if not path.endswith(BOT_EXTENSION):
            raise BotLoadError(f"Not a {BOT_EXTENSION} file", path=path)
        bot_dir = os.path.dirname(path)
        bot_files = [path]
        helper_files: List[str] = []
    elif os.path.isdir(path):
        bot_dir = path
        entries = sorted(os.listdir(path))
        bot_files = [os.path.join(path, n) for n in entries if n.endswith(BOT_EXTENSION)]
        helper_files = [os.path.join(path, n) for n in entries if n.endswith(HELPER_EXTENSION)]
        if not bot_files:
            raise BotLoadError(f"No {BOT_EXTENSION} files found", path=path)
    else:
        raise BotLoadError("Bot path does not exist", path=path)

    try:
        config = load_bot_config(bot_dir if os.path.isdir(path) else None, overrides)
    except (OSError, ValueError, TypeError) as e:
        raise BotLoadError("Invalid bot configuration", path=path, original_exception=e) from e

    trees = []
    errors: List[ParseError] = []
    for bot_file in bot_files:
        try:
            tree, file_errors = parse_bot_file(bot_file)
        except (OSError, UnicodeDecodeError) as e:
            raise BotLoadError("Cannot parse bot file", path=bot_file, original_exception=e) from e
        trees.append(tree)
        errors.extend(file_errors)
        bot_execution_logger.info(f"Loaded bot file: {os.path.basename(bot_file)} ({len(file_errors)} parse issue(s))")

    bot = flatten_bot(trees)
    if not bot.themes:
        raise BotLoadError("Bot defines no states", path=path)

    helpers = [(os.path.basename(p), _read_text(p)) for p in helper_files]
    bot_execution_logger.info(
        f"Bot project loaded: {path} - themes: {list(bot.themes)}, helpers: {[n for n, _ in helpers]}"
    )
    return BotProject(bot=bot, config=config, helpers=helpers, errors=errors, path=path)
