from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class SessionFrame(BaseModel):
    type: Literal["session"] = "session"
    sessionId: str
    message: str = "Connected to bot server"


class BotMessageFrame(BaseModel):
    type: Literal["bot_message"] = "bot_message"
    text: str
    buttons: Optional[List[str]] = None # only on the trailing frame


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str


class UserMessage(BaseModel):
    text: str = ""


class FormattedReplyModel(BaseModel):
    answers: List[str] = Field(default_factory=list)
    buttons: List[str] = Field(default_factory=list)


class SimulatePayload(BaseModel):
    messages: List[str] = Field(default_factory=list)
    session_id: Optional[str] = None


class SimulatedTurn(BaseModel):
    message: str
    reply: FormattedReplyModel


class SimulateResponse(BaseModel):
    session_id: str
    start: FormattedReplyModel
    turns: List[SimulatedTurn] = Field(default_factory=list)
    final_state: str
    logs: List[Dict[str, Any]] = Field(default_factory=list)


class ThemeStates(BaseModel):
    theme: str
    states: List[str] = Field(default_factory=list)


class BotStatesResponse(BaseModel):
    bot: str
    themes: List[ThemeStates] = Field(default_factory=list)
    parse_errors: List[str] = Field(default_factory=list)
