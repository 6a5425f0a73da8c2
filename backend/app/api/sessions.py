# File: backend\app\api\sessions.py
import json
import uuid
from typing import List

from fastapi import APIRouter, Body, HTTPException, Request, WebSocket, WebSocketDisconnect, status

from app.models.messages import (
    BotMessageFrame, BotStatesResponse, ErrorFrame, FormattedReplyModel, SessionFrame,
    SimulatePayload, SimulateResponse, SimulatedTurn, ThemeStates, UserMessage,
)
from app.utils.logger_api import api_logger, get_bot_logs_for_request, remove_list_log_handler
from bot_manager import create_bot_interpreter, run_conversation
from logic.bot_engine import BotInterpreter
from logic.bot_loader import BotProject
from models.reply import format_reply
from utils.logger import reset_session_id, set_session_id

router = APIRouter()


def get_project(app) -> BotProject:
    project = getattr(app.state, "bot_project", None)
    if project is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No bot project loaded.")
    return project


def reply_frames(interpreter: BotInterpreter, reply: str | None) -> List[dict]:
    """One bot_message per answer line, then one empty-text frame carrying the buttons."""
    formatted = interpreter.format_for_api(reply)
    frames = [BotMessageFrame(text=answer).model_dump(exclude_none=True) for answer in formatted.answers]
    if formatted.buttons:
        frames.append(BotMessageFrame(text="", buttons=formatted.buttons).model_dump(exclude_none=True))
    return frames


def parse_inbound(raw: str) -> str:
    try:
        data = json.loads(raw)
    except ValueError:
        return raw.strip()
    if isinstance(data, dict):
        return UserMessage(**data).text.strip()
    if isinstance(data, str):
        return data.strip()
    return raw.strip()


@router.websocket("/ws")
async def bot_session(websocket: WebSocket):
    await websocket.accept()
    project = getattr(websocket.app.state, "bot_project", None)
    if project is None:
        await websocket.send_json(ErrorFrame(message="No bot project loaded.").model_dump())
        await websocket.close()
        return

    session_id = uuid.uuid4().hex
    token = set_session_id(session_id)
    api_logger.info(f"New session: {session_id}")
    interpreter = None
    try:
        interpreter = create_bot_interpreter(project, session_id)
        await websocket.send_json(SessionFrame(sessionId=session_id).model_dump())

        try:
            for frame in reply_frames(interpreter, await interpreter.start()):
                await websocket.send_json(frame)
        except WebSocketDisconnect:
            raise
        except Exception as e:
            api_logger.error(f"[{session_id}] Bot start failed: {e}", exc_info=True)
            await websocket.send_json(ErrorFrame(message=str(e)).model_dump())

        while True:
            raw = await websocket.receive_text()
            try:
                text = parse_inbound(raw)
                api_logger.debug(f"[{session_id}] Passing to interpreter: {text!r}")
                reply = await interpreter.handle_message(text)
                if not reply:
                    continue
                for frame in reply_frames(interpreter, reply):
                    await websocket.send_json(frame)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                api_logger.error(f"[{session_id}] Error handling WebSocket message: {e}", exc_info=True)
                await websocket.send_json(ErrorFrame(message=str(e)).model_dump())
    except WebSocketDisconnect:
        api_logger.info(f"Session closed: {session_id}")
    finally:
        if interpreter is not None:
            interpreter.close()
        reset_session_id(token)


@router.post("/api/bot/simulate", response_model=SimulateResponse)
async def simulate_conversation(request: Request, payload: SimulatePayload = Body(...)):
    project = get_project(request.app)
    session_id = payload.session_id or uuid.uuid4().hex
    api_logger.info(f"Simulating {len(payload.messages)} message(s) against '{project.name}' (session {session_id})")

    captured_logs, log_handler = get_bot_logs_for_request(session_id)
    try:
        result = await run_conversation(project, payload.messages, session_id=session_id)
        return SimulateResponse(
            session_id=session_id,
            start=FormattedReplyModel(**vars(format_reply(result["start"]))),
            turns=[
                SimulatedTurn(message=message, reply=FormattedReplyModel(**vars(format_reply(reply))))
                for message, reply in result["turns"]
            ],
            final_state=result["state"],
            logs=captured_logs,
        )
    except HTTPException:
        raise
    except Exception as e:
        api_logger.error(f"Error simulating conversation for '{project.name}': {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Bot engine error: {e}")
    finally:
        remove_list_log_handler(log_handler)


@router.get("/api/bot/states", response_model=BotStatesResponse)
async def list_states(request: Request):
    project = get_project(request.app)
    return BotStatesResponse(
        bot=project.name,
        themes=[ThemeStates(theme=name, states=list(theme.states)) for name, theme in project.bot.themes.items()],
        parse_errors=[str(e) for e in project.errors],
    )
