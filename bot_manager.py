import uuid
from typing import Any, Dict, Iterable

from logic.bot_engine import BotInterpreter, qualified_name
from logic.bot_loader import BotProject, load_bot_project
from utils.logger import bot_execution_logger, reset_session_id, set_session_id


def create_bot_interpreter(project: BotProject, session_id: str | None = None) -> BotInterpreter:
    """A fresh session over an already loaded project; helpers run in its own host."""
    try:
        return BotInterpreter(project.bot, project.config, helpers=project.helpers, session_id=session_id)
    except Exception as e:
        bot_execution_logger.error(f"create_bot_interpreter: initialisation failed for {project.path}: {e}", exc_info=True)
        raise


async def run_conversation(project: BotProject, messages: Iterable[str], session_id: str | None = None) -> Dict[str, Any]:
    """
    Runs start() and then every message through one interpreter.
    Returns {"start": reply, "turns": [(message, reply), ...], "state": final state}.
    """
    session_id = session_id or uuid.uuid4().hex
    token = set_session_id(session_id)
    interpreter = None
    try:
        interpreter = create_bot_interpreter(project, session_id)
        start_reply = await interpreter.start()
        turns = []
        for message in messages:
            turns.append((message, await interpreter.handle_message(message.strip())))
        return {
            "session_id": interpreter.session_id,
            "start": start_reply,
            "turns": turns,
            "state": qualified_name(interpreter.position),
        }
    finally:
        if interpreter is not None:
            interpreter.close()
        reset_session_id(token)


def load_project(path: str) -> BotProject:
    project = load_bot_project(path)
    for error in project.errors:
        bot_execution_logger.debug(f"Parse issue kept as diagnostic: {error}")
    return project
