# logic/bot_parser.py
from __future__ import annotations
import ast
import re
import textwrap
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from logic.bot_ast import (
    ROOT_THEME, AnswerTag, Bot, BotTree, GoNowTag, GoTag, ScriptTag, State,
    StateNode, Theme, ThemeNode, normalize_theme,
)
from logic.triggers import TriggerError, WILDCARD, compile_trigger
from utils.logger import bot_execution_logger

KEY_VALUE_RE = re.compile(r"^([a-zA-Z!]+):\s*(.*)$")
CONTINUATION_PREFIX_RE = re.compile(r"^( {4}|\t)")
LIST_KEYS = ("a", "script", "go", "go!")
TRIGGER_KEYS = ("q", "q!")
CONTINUATION_INDENT = 4

@dataclass
class ParseError:
    message: str
    line_num: int
    line_content: str
    source_name: str = "<string>"
    def __str__(self):
        return f"[Parse Error] {self.source_name} line {self.line_num}: '{self.line_content.strip()}' - {self.message}"

def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())

def _join_path(*parts: str) -> str:
    return re.sub(r"/+", "/", "/".join(parts))

def _wrap_script(body_lines: List[str]) -> str:
    body = textwrap.dedent("\n".join(body_lines)).strip("\n")
    return "\n" + body + "\n"

def check_script_syntax(body: str) -> Optional[str]:
    try:
        compile(body, "<bot-script>", "exec", flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT)
    except SyntaxError as e:
        return f"Script syntax error: {e.msg} (script line {e.lineno})"
    return None

def parse_bot_text(text: str, source_name: str = "<string>") -> Tuple[BotTree, List[ParseError]]:
    tree = BotTree(source_name=source_name)
    errors: List[ParseError] = []
    lines = text.split("\n")

    theme: Optional[ThemeNode] = None
    stack: List[StateNode] = []
    open_key: Optional[str] = None
    open_key_line = 0
    buffer: List[str] = []

    def error(msg: str, num: int, raw: str):
        errors.append(ParseError(msg, num, raw, source_name))

    def add_value(state: StateNode, key: str, value: str, num: int, raw: str):
        if key == "a":
            state.tags.append(AnswerTag(value))
        elif key == "script":
            body = _wrap_script(value.split("\n"))
            problem = check_script_syntax(body)
            if problem:
                error(problem, num, raw)
            state.tags.append(ScriptTag(body, num))
        elif key == "go":
            state.tags.append(GoTag(value.strip()))
        elif key == "go!":
            state.tags.append(GoNowTag(value.strip()))
        elif key == "buttons":
            state.buttons = f"{state.buttons}\n{value}" if state.buttons else value
        else:
            state.fields[key] = value
            if key in TRIGGER_KEYS and value.strip() != WILDCARD:
                try:
                    compile_trigger(value)
                except TriggerError as e:
                    error(str(e), num, raw)

    def commit():
        nonlocal open_key, buffer
        if open_key and stack:
            value = "\n".join(buffer).rstrip()
            if value:
                add_value(stack[-1], open_key, value, open_key_line, open_key + ":")
        buffer = []
        open_key = None

    def pop_dedented(indent: int):
        # the outermost open state keeps unindented content
        while len(stack) > 1 and indent <= stack[-1].indent:
            stack.pop()

    i = 0
    while i < len(lines):
        num = i + 1
        raw = lines[i].rstrip("\r")
        i += 1
        indent = _indent_of(raw)
        trimmed = raw.strip()

        if not trimmed:
            continue

        if trimmed.startswith("theme:"):
            commit()
            theme = tree.theme(trimmed[len("theme:"):].strip() or ROOT_THEME)
            stack.clear()
            continue

        if trimmed.startswith("state:"):
            commit()
            name = trimmed[len("state:"):].strip()
            if not name:
                error("state: requires a name", num, raw)
                continue
            while stack and indent <= stack[-1].indent:
                stack.pop()
            if theme is None:
                theme = tree.theme(ROOT_THEME)
            if stack:
                parent = stack[-1]
                node = StateNode(name=name, path=_join_path(parent.path, name), indent=indent, line_num=num)
                parent.children.append(node)
            else:
                node = StateNode(name=name, path=_join_path("", name), indent=indent, line_num=num)
                theme.states.append(node)
            stack.append(node)
            continue

        if open_key == "buttons" and not trimmed.startswith("buttons:"):
            if stack and indent > stack[-1].indent:
                buffer.append(trimmed)
                continue
            commit()

        m = KEY_VALUE_RE.match(trimmed)
        if m:
            key, rest = m.group(1), m.group(2).strip()
            commit()
            pop_dedented(indent)

            if key == "script":
                body_lines = [rest] if rest else []
                while i < len(lines):
                    nxt = lines[i].rstrip("\r")
                    if not nxt.strip():
                        body_lines.append("")
                        i += 1
                        continue
                    if _indent_of(nxt) <= indent:
                        break
                    body_lines.append(nxt[indent:])
                    i += 1
                if not stack:
                    error("script: outside of a state, discarded", num, raw)
                elif any(l.strip() for l in body_lines):
                    add_value(stack[-1], "script", "\n".join(body_lines), num, raw)
                continue

            if not stack:
                error(f"'{key}:' outside of a state, discarded", num, raw)
                continue

            if key == "buttons":
                open_key, open_key_line = "buttons", num
                if rest:
                    buffer.append(rest)
                continue

            if rest:
                add_value(stack[-1], key, rest, num, raw)
            else:
                open_key, open_key_line = key, num
            continue

        if open_key and (indent >= CONTINUATION_INDENT or raw.startswith("\t")):
            buffer.append(CONTINUATION_PREFIX_RE.sub("", raw, count=1))
            continue

        if open_key:
            commit()
        error("Unrecognized line ignored", num, raw)

    commit()

    for e in errors:
        bot_execution_logger.warning(str(e))
    return tree, errors

def parse_bot_file(path: str | Path) -> Tuple[BotTree, List[ParseError]]:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()
    return parse_bot_text(content, source_name=path.name)

def _walk(nodes: Iterable[StateNode]) -> Iterator[StateNode]:
    for node in nodes:
        yield node
        yield from _walk(node.children)

def flatten_bot(trees: Iterable[BotTree]) -> Bot:
    """
    Second build phase: the parse trees are left untouched and a separate,
    read-only index theme -> path -> State is produced. Later definitions of a
    path replace earlier ones.
    """
    themes: Dict[str, Dict[str, State]] = {}
    for tree in trees:
        for theme_node in tree.themes:
            theme_name = normalize_theme(theme_node.name)
            states = themes.setdefault(theme_name, {})
            for node in _walk(theme_node.states):
                if node.path in states:
                    bot_execution_logger.warning(
                        f"Duplicate state '{node.path}' in theme '{theme_name}' ({tree.source_name} line {node.line_num}); later definition wins"
                    )
                states[node.path] = State(
                    path=node.path,
                    tags=tuple(node.tags),
                    fields=MappingProxyType(dict(node.fields)),
                    buttons=node.buttons,
                    line_num=node.line_num,
                )
    return Bot(themes=MappingProxyType({
        name: Theme(name=name, states=MappingProxyType(states)) for name, states in themes.items()
    }))

def compile_bot_text(text: str, source_name: str = "<string>") -> Tuple[Bot, List[ParseError]]:
    tree, errors = parse_bot_text(text, source_name)
    return flatten_bot([tree]), errors
