# logic/bot_ast.py
from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, NamedTuple, Optional, Union

ROOT_THEME = "/"

# ---- tags (closed variant, replayed in authored order) ----

@dataclass(frozen=True)
class ScriptTag:
    body: str
    line_num: int = 0

@dataclass(frozen=True)
class AnswerTag:
    text: str

@dataclass(frozen=True)
class GoTag:
    target: str

@dataclass(frozen=True)
class GoNowTag:
    target: str

Tag = Union[ScriptTag, AnswerTag, GoTag, GoNowTag]

# ---- parse tree ----

@dataclass
class StateNode:
    name: str
    path: str
    indent: int = 0
    line_num: int = 0
    tags: List[Tag] = field(default_factory=list)
    fields: Dict[str, str] = field(default_factory=dict)
    buttons: Optional[str] = None
    children: List["StateNode"] = field(default_factory=list)

@dataclass
class ThemeNode:
    name: str
    states: List[StateNode] = field(default_factory=list)

@dataclass
class BotTree:
    source_name: str = "<string>"
    themes: List[ThemeNode] = field(default_factory=list)

    def theme(self, name: str) -> ThemeNode:
        for t in self.themes:
            if t.name == name:
                return t
        node = ThemeNode(name=name)
        self.themes.append(node)
        return node

# ---- flattened index ----

def normalize_theme(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        return ROOT_THEME
    return name if name.startswith("/") else "/" + name

@dataclass(frozen=True)
class State:
    path: str
    tags: tuple = ()
    fields: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    buttons: Optional[str] = None
    line_num: int = 0

    @property
    def q(self) -> Optional[str]:
        return self.fields.get("q")

    @property
    def q_override(self) -> Optional[str]:
        return self.fields.get("q!")

    @property
    def go(self) -> Optional[str]:
        return self._last(GoTag)

    @property
    def go_now(self) -> Optional[str]:
        return self._last(GoNowTag)

    def _last(self, tag_type) -> Optional[str]:
        found = None
        for tag in self.tags:
            if isinstance(tag, tag_type):
                found = tag.target
        return found

    @property
    def answers(self) -> List[str]:
        return [t.text for t in self.tags if isinstance(t, AnswerTag)]

    @property
    def scripts(self) -> List[str]:
        return [t.body for t in self.tags if isinstance(t, ScriptTag)]

@dataclass(frozen=True)
class Theme:
    name: str
    states: Mapping[str, State]

class ResolvedTarget(NamedTuple):
    theme: str
    state: str

@dataclass(frozen=True)
class Bot:
    themes: Mapping[str, Theme]

    def has_theme(self, theme: str) -> bool:
        return theme in self.themes

    def get_state(self, resolved: ResolvedTarget | None) -> Optional[State]:
        if resolved is None:
            return None
        theme = self.themes.get(resolved.theme)
        if theme is None:
            return None
        return theme.states.get(resolved.state)

    def has_state(self, resolved: ResolvedTarget | None) -> bool:
        return self.get_state(resolved) is not None

    def iter_states(self):
        for theme_name, theme in self.themes.items():
            for path, state in theme.states.items():
                yield theme_name, path, state

    def default_theme(self) -> Optional[str]:
        if ROOT_THEME in self.themes:
            return ROOT_THEME
        return next(iter(self.themes), None)
