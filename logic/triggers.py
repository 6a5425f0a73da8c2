# logic/triggers.py
from __future__ import annotations
import functools
import re
from dataclasses import dataclass
from typing import List, Optional

from logic.bot_ast import ResolvedTarget
from utils.logger import bot_execution_logger

WILDCARD = "*"
REGEX_LITERAL_RE = re.compile(r"\$regex<(.*)>", re.DOTALL)
BUTTON_ARROW = "->"
_QUOTES_RE = re.compile(r"[\"']")


class TriggerError(Exception):
    def __init__(self, message: str, trigger: str | None = None, original_exception: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.trigger = trigger
        self.original_exception = original_exception

    def __str__(self):
        s = f"TriggerError: {self.message}"
        if self.trigger:
            s += f" (trigger: {self.trigger})"
        if self.original_exception:
            s += f" Caused by: {type(self.original_exception).__name__}: {self.original_exception}"
        return s


def extract_regex_body(trigger: str) -> Optional[str]:
    m = REGEX_LITERAL_RE.search(trigger)
    return m.group(1) if m else None


def compile_trigger(trigger: str) -> re.Pattern:
    """Raises TriggerError for triggers that are neither `*` nor a valid `$regex<...>`."""
    body = extract_regex_body(trigger)
    if body is None:
        raise TriggerError("Trigger is not a $regex<...> literal", trigger)
    try:
        return re.compile(body)
    except re.error as e:
        raise TriggerError(f"Invalid regex '{body}'", trigger, e) from e


@functools.lru_cache(maxsize=512)
def _cached_pattern(trigger: str) -> Optional[re.Pattern]:
    try:
        return compile_trigger(trigger)
    except TriggerError as e:
        bot_execution_logger.warning(str(e))
        return None


def trigger_matches(trigger: str | None, message: str | None) -> bool:
    if not trigger:
        return False
    trigger = trigger.strip()
    if trigger == WILDCARD:
        return True
    pattern = _cached_pattern(trigger)
    if pattern is None:
        return False
    return pattern.search(message or "") is not None


@dataclass(frozen=True)
class Button:
    label: str
    target: Optional[str] = None
    resolved: Optional[ResolvedTarget] = None

    def matches(self, message: str | None) -> bool:
        return self.label.lower() == (message or "").strip().lower()


def parse_buttons(text: str | None) -> List[Button]:
    if not text:
        return []
    buttons: List[Button] = []
    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue
        label, _, target = line.partition(BUTTON_ARROW)
        label = _QUOTES_RE.sub("", label).strip()
        target = _QUOTES_RE.sub("", target).strip()
        buttons.append(Button(label=label, target=target or None))
    return buttons
