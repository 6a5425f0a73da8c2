# File: utils/logger.py
import contextvars
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler

from utils.config_utils import LOG_DIR, MAX_LOG_BYTES, BACKUP_COUNT

RED = "\033[91m"
RST = "\033[0m"

LOG_FILE = os.path.join(LOG_DIR, "bot_execution.log")
SCRIPT_HANDLER_NAME = "bot_script_simple"

current_session_id: contextvars.ContextVar[str] = contextvars.ContextVar("current_session_id", default="NO_SESSION")


class SessionContextFilter(logging.Filter):
    def filter(self, record):
        record.session_id = current_session_id.get()
        return True


session_ctx_filter = SessionContextFilter()


def set_session_id(session_id: str | None) -> contextvars.Token:
    return current_session_id.set(session_id or "NO_SESSION")


def reset_session_id(token: contextvars.Token):
    current_session_id.reset(token)


def setup_bot_loggers():
    execution_logger = logging.getLogger("bot_execution")
    script_logger = logging.getLogger("bot_script")

    if not any(getattr(h, "name", "") == SCRIPT_HANDLER_NAME for h in script_logger.handlers):
        sh = logging.StreamHandler(sys.stdout)
        sh.name = SCRIPT_HANDLER_NAME
        sh.setLevel(logging.INFO)
        sh.setFormatter(logging.Formatter("%(message)s"))
        script_logger.addHandler(sh)

    if not any(isinstance(h, RotatingFileHandler) for h in execution_logger.handlers):
        try:
            os.makedirs(LOG_DIR, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE, mode="a", encoding="utf-8",
                maxBytes=MAX_LOG_BYTES, backupCount=BACKUP_COUNT
            )
            fmt = '%(asctime)s |%(session_id)s| %(name)s - %(levelname)s [%(filename)s:%(lineno)d] - %(message)s'
            file_handler.setFormatter(logging.Formatter(fmt))
            execution_logger.addHandler(file_handler)
            script_logger.addHandler(file_handler)
        except Exception as e:
            print(f"{RED}CRITICAL: cannot init bot loggers: {e}{RST}", file=sys.stderr)
            traceback.print_exc(file=sys.stderr)

    for lg in (execution_logger, script_logger):
        lg.setLevel(logging.DEBUG)
        lg.propagate = False
        if session_ctx_filter not in lg.filters:
            lg.addFilter(session_ctx_filter)

    return execution_logger, script_logger


bot_execution_logger, bot_script_logger = setup_bot_loggers()
