import logging
import sys
from app.core.config import API_LOGGER_NAME

ENGINE_LOGGERS = ("bot_execution", "bot_script")

# General API logger
api_logger = logging.getLogger(API_LOGGER_NAME)
api_logger.setLevel(logging.INFO)
console_handler = logging.StreamHandler(sys.stdout)
formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s')
console_handler.setFormatter(formatter)
if not api_logger.hasHandlers():
    api_logger.addHandler(console_handler)


class ListLogHandler(logging.Handler):
    def __init__(self, log_list, session_id=None):
        super().__init__()
        self.log_list = log_list
        self.session_id = session_id

    def emit(self, record):
        if self.session_id and getattr(record, "session_id", None) != self.session_id:
            return
        msg = self.format(record)
        # script output is returned as written
        if record.name == "bot_script":
            msg = record.getMessage()
        self.log_list.append({
            "level": record.levelname,
            "message": msg,
            "name": record.name,
            "timestamp": getattr(record, "asctime", None),
        })


def get_bot_logs_for_request(session_id=None):
    """
    Call this before running a bot conversation to capture engine logs for that
    request (only records stamped with `session_id`, when given). Returns the
    list and the handler; remove the handler afterwards.
    """
    log_list = []
    list_handler = ListLogHandler(log_list, session_id)
    list_handler.setFormatter(logging.Formatter('%(asctime)s |%(session_id)s| %(name)s - %(levelname)s - %(message)s'))
    for name in ENGINE_LOGGERS:
        logging.getLogger(name).addHandler(list_handler)
    return log_list, list_handler


def remove_list_log_handler(handler):
    for name in ENGINE_LOGGERS:
        logging.getLogger(name).removeHandler(handler)
