# File: utils/config_utils.py
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

LOG_DIR = os.getenv("BOT_LOG_DIR", "Logs")
MAX_LOG_BYTES = 2_000_000
BACKUP_COUNT = 3

DEFAULT_START_STATE = os.getenv("BOT_START_STATE", "/Start")
DEFAULT_NOT_UNDERSTOOD = os.getenv("BOT_NOT_UNDERSTOOD", "I didn’t understand that. Please try again.")
DEFAULT_SCRIPT_TIMEOUT = float(os.getenv("BOT_SCRIPT_TIMEOUT", 20))
DEFAULT_MAX_TRANSITION_DEPTH = int(os.getenv("BOT_MAX_TRANSITION_DEPTH", 10))

DEFAULT_BOT_PATH = os.getenv("BOT_PATH", os.path.join("bots", "pizza_bot"))

BOT_CONFIG_FILE = "config.json"


@dataclass(frozen=True)
class BotConfig:
    start_state: str = DEFAULT_START_STATE
    not_understood_reply: str = DEFAULT_NOT_UNDERSTOOD
    script_timeout: float = DEFAULT_SCRIPT_TIMEOUT
    max_transition_depth: int = DEFAULT_MAX_TRANSITION_DEPTH


def get_config_path(bot_dir: str | Path | None) -> str:
    if not bot_dir:
        return ""
    return os.path.join(bot_dir, BOT_CONFIG_FILE)


def read_config_json(bot_dir: str | Path | None) -> dict | None:
    path = get_config_path(bot_dir)
    if not path or not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_bot_config(bot_dir: str | Path | None, overrides: dict | None = None) -> BotConfig:
    """
    Env defaults, then the bot project's config.json, then explicit overrides.
    Unknown keys are ignored.
    """
    data = dict(read_config_json(bot_dir) or {})
    if overrides:
        data.update(overrides)
    known = {f.name for f in fields(BotConfig)}
    cfg = BotConfig()
    values = {}
    for key, value in data.items():
        if key not in known or value is None:
            continue
        current = getattr(cfg, key)
        values[key] = type(current)(value)
    return replace(cfg, **values)
