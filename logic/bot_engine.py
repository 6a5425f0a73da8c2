# File: logic/bot_engine.py
from __future__ import annotations
import uuid
from typing import Iterable, List, Optional, Tuple

from logic.bot_ast import (
    ROOT_THEME, AnswerTag, Bot, GoNowTag, GoTag, ResolvedTarget, ScriptTag, State,
)
from logic.path_resolver import StatePathResolver
from logic.script_host import ScriptHost, TransitionRequest
from logic.substitution import Substitutor
from logic.triggers import Button, parse_buttons, trigger_matches
from models.context import ConversationContext
from models.reply import FormattedReply, format_reply, render_options
from utils.config_utils import BotConfig
from utils.logger import bot_execution_logger


def qualified_name(resolved: ResolvedTarget) -> str:
    if resolved.theme == ROOT_THEME:
        return resolved.state
    return f"{resolved.theme}{resolved.state}"


def _parent_of(path: str) -> str:
    return path.rsplit("/", 1)[0]


class BotInterpreter:
    """
    One conversation. Holds the live context, the active theme/state and a
    script host of its own; the Bot index is shared and never mutated.
    """

    def __init__(
        self,
        bot: Bot,
        config: BotConfig | None = None,
        helpers: Iterable[Tuple[str, str]] = (),
        session_id: str | None = None,
    ):
        self.bot = bot
        self.config = config or BotConfig()
        self.session_id = session_id or uuid.uuid4().hex
        self.context = ConversationContext()
        self.resolver = StatePathResolver(bot)
        self.theme: Optional[str] = bot.default_theme()
        self.current_state: str = self.config.start_state
        self.host = ScriptHost(self.context, self._resolve_existing, timeout=self.config.script_timeout)
        self.substitutor = Substitutor(self.host)
        self._scripted_buttons: List[Button] = []
        self._button_guard: Optional[str] = None
        self._hops = 0
        self.host.load_helpers(helpers)

    # ---- addressing ----

    @property
    def position(self) -> ResolvedTarget:
        return ResolvedTarget(self.theme or ROOT_THEME, self.current_state)

    def current(self) -> Optional[State]:
        return self.bot.get_state(self.position)

    def _resolve(self, target: str | None) -> Optional[ResolvedTarget]:
        return self.resolver.resolve(target, self.current_state, self.theme)

    def _resolve_existing(self, target: str | None) -> Optional[ResolvedTarget]:
        resolved = self._resolve(target)
        if resolved is None or not self.bot.has_state(resolved):
            return None
        return resolved

    # ---- session boundary ----

    async def start(self) -> str:
        self._hops = 0
        self.context.input = ""
        start = self.config.start_state
        bot_execution_logger.info(f"Starting bot at state: {start}")
        reply = await self._transition(start)
        return reply.strip()

    async def handle_message(self, message: str) -> str:
        bot_execution_logger.info(f'Received message: "{message}" (current = {qualified_name(self.position)})')
        self._hops = 0
        self.context.input = message
        state = self.current()

        # 1. buttons
        reply = await self._handle_button_click(message, state)
        if reply is not None:
            return reply

        # 2. local q!
        skip_to_global = False
        if state is not None and trigger_matches(state.q_override, message):
            target = state.go or state.go_now
            resolved = self._resolve(target) if target else None
            if resolved is None:
                bot_execution_logger.debug("Local q! matched without a target, continuing with global triggers")
                skip_to_global = True
            elif resolved == self.position:
                bot_execution_logger.debug(f"Local q! target '{target}' is the current state, continuing with global triggers")
                skip_to_global = True
            else:
                bot_execution_logger.debug(f"Local q! matched, transition to {target}")
                return await self._transition_to(resolved, target, message)

        if not skip_to_global:
            # 3. deferred go
            if state is not None and state.go:
                bot_execution_logger.debug(f"Deferred go transition to: {state.go}")
                return await self._transition(state.go, message)

            # 4. nested / sibling q
            nested = self._find_nested_match(message)
            if nested is not None:
                bot_execution_logger.debug(f"Nested state matched: {qualified_name(nested)}")
                return await self._transition_to(nested, qualified_name(nested), message)

        # 5. global q!
        matched = self._find_global_match(message)
        if matched is not None:
            bot_execution_logger.debug(f"Global q! matched in state {qualified_name(matched)}")
            return await self._transition_to(matched, qualified_name(matched), message)

        # 6. nothing
        bot_execution_logger.info(f"No match for message, staying in state: {qualified_name(self.position)}")
        return self.config.not_understood_reply

    def format_for_api(self, reply: str | None) -> FormattedReply:
        return format_reply(reply)

    def close(self):
        self.host.close()

    # ---- precedence helpers ----

    def _available_buttons(self, state: Optional[State]) -> List[Button]:
        static = parse_buttons(state.buttons) if state is not None else []
        return list(self._scripted_buttons) + static

    async def _handle_button_click(self, message: str, state: Optional[State]) -> Optional[str]:
        buttons = self._available_buttons(state)
        if not buttons:
            return None
        clicked = next((b for b in buttons if b.matches(message)), None)
        if clicked is None:
            return None
        bot_execution_logger.debug(f'Button clicked: "{clicked.label}" -> {clicked.target or "null"}')

        if clicked.resolved is not None:
            return await self._transition_to(clicked.resolved, clicked.target, message)
        if clicked.target:
            return await self._transition(clicked.target, message)

        if self._button_guard == message:
            bot_execution_logger.debug(f'Prevented recursion loop for button "{message}"')
            return None
        self._button_guard = message
        try:
            bot_execution_logger.debug(f'Button "{message}" has no target, handling it as a message')
            return await self.handle_message(message)
        finally:
            self._button_guard = None

    def _find_nested_match(self, message: str) -> Optional[ResolvedTarget]:
        theme = self.bot.themes.get(self.theme or ROOT_THEME)
        if theme is None:
            return None
        current = self.current_state
        for path, state in theme.states.items():
            if _parent_of(path) == current and trigger_matches(state.q, message):
                return ResolvedTarget(theme.name, path)
        parent = _parent_of(current)
        for path, state in theme.states.items():
            if path != current and _parent_of(path) == parent and trigger_matches(state.q, message):
                return ResolvedTarget(theme.name, path)
        return None

    def _find_global_match(self, message: str) -> Optional[ResolvedTarget]:
        here = self.position
        for theme_name, path, state in self.bot.iter_states():
            if (theme_name, path) == here:
                continue
            if state.q_override and trigger_matches(state.q_override, message):
                return ResolvedTarget(theme_name, path)
        return None

    # ---- transitions ----

    async def _transition(self, target: str | None, user_input: str | None = None) -> str:
        if not target:
            return ""
        target = str(target).strip()
        resolved = self._resolve(target)
        if resolved is None:
            return f'State "{target}" not found'
        return await self._transition_to(resolved, target, user_input)

    async def _transition_to(self, resolved: ResolvedTarget, target: str | None, user_input: str | None = None) -> str:
        if not self.bot.has_theme(resolved.theme):
            bot_execution_logger.warning(f'Transition target "{target}" not found: theme "{resolved.theme}" missing')
            return f'State "{target}" not found (theme "{resolved.theme}" missing)'
        if not self.bot.has_state(resolved):
            bot_execution_logger.warning(f'Transition target "{target}" not found (resolved: {qualified_name(resolved)})')
            return f'State "{target}" not found'

        self._hops += 1
        if self._hops > self.config.max_transition_depth:
            bot_execution_logger.error(
                f"Transition chain limit ({self.config.max_transition_depth}) reached at {qualified_name(resolved)}"
            )
            return f"[BOT ERROR: transition chain limit {self.config.max_transition_depth} reached at '{target}']"

        bot_execution_logger.info(
            f'Transitioning: {qualified_name(self.position)} -> {qualified_name(resolved)} (target="{target}", input="{user_input}")'
        )
        self.theme = resolved.theme
        self.current_state = resolved.state
        if user_input is not None:
            self.context.input = user_input
        return await self._enter_state(resolved)

    async def _jump(self, reply: str, target: str) -> str:
        next_reply = await self._transition(target)
        return (reply + "\n" + next_reply).strip()

    # ---- sequential tag executor ----

    async def _enter_state(self, resolved: ResolvedTarget) -> str:
        state = self.bot.get_state(resolved)
        if state is None:
            return ""
        name = qualified_name(resolved)
        bot_execution_logger.debug(f"Sequentially entering state: {name}")

        self._scripted_buttons = []
        scripted_buttons: List[Button] = []
        requested: Optional[TransitionRequest] = None
        reply = ""
        script_index = 0

        for tag in state.tags:
            if isinstance(tag, ScriptTag):
                script_index += 1
                result = await self.host.run(tag.body, label=f"{name}#{script_index}")
                reply += "".join(f"{answer}\n" for answer in result.answers)
                scripted_buttons.extend(result.buttons)
                if result.transition is None:
                    continue
                if requested is not None:
                    bot_execution_logger.debug(f"Transition request {result.transition} ignored, {requested} came first")
                    continue
                requested = result.transition
                if not requested.deferred:
                    bot_execution_logger.debug(f"Instant scripted transition -> {requested.target}")
                    return await self._jump(reply, requested.target)
            elif isinstance(tag, AnswerTag):
                reply += await self.substitutor.substitute(tag.text) + "\n"
            elif isinstance(tag, GoNowTag):
                if requested is not None:
                    bot_execution_logger.debug(f"go! {tag.target} ignored, {requested} came first")
                    continue
                bot_execution_logger.debug(f"Instant go! transition -> {tag.target}")
                return await self._jump(reply, tag.target)
            elif isinstance(tag, GoTag):
                # applied after the loop
                continue
            else:
                raise TypeError(f"Unknown tag type: {type(tag).__name__}")

        deferred_target = requested.target if requested is not None else state.go
        if deferred_target:
            bot_execution_logger.debug(f"Deferred go transition -> {deferred_target}")
            reply += "\n" + await self._transition(deferred_target)

        if self.position == resolved:
            self._scripted_buttons = scripted_buttons

        buttons = scripted_buttons + parse_buttons(state.buttons)
        if buttons:
            labels = [b.label for b in buttons]
            reply += render_options(labels)
            bot_execution_logger.debug(f"Buttons displayed: {labels}")

        return reply.strip()
