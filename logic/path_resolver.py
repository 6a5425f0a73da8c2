# File: logic/path_resolver.py
import re
from typing import List, Optional

from logic.bot_ast import ROOT_THEME, Bot, ResolvedTarget

UP_ONLY_RE = re.compile(r"^\.\.(?:/\.\.)*$")
UP_THEN_DOWN_RE = re.compile(r"^((?:\.\./)+)(.+)$")


class PathResolverError(Exception):
    """Raised by strict lookups; resolve() itself never raises."""
    def __init__(self, message: str, path: str | None = None, original_exception: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.original_exception = original_exception

    def __str__(self):
        s = f"PathResolverError: {self.message}"
        if self.path:
            s += f" (Path: {self.path})"
        if self.original_exception:
            s += f" Caused by: {type(self.original_exception).__name__}: {self.original_exception}"
        return s


def _segments(path: str) -> List[str]:
    return [p for p in (path or "").split("/") if p]


def _join(segments: List[str]) -> str:
    return "/" + "/".join(segments)


class StatePathResolver:
    """
    Turns a transition target written by a bot author into a (theme, state)
    pair. Rules are tried in a fixed order; relative forms never check that
    the state exists, callers do that with Bot.has_state().
    """

    def __init__(self, bot: Bot):
        self.bot = bot

    def _exists(self, theme: str, state: str) -> bool:
        return self.bot.has_state(ResolvedTarget(theme, state))

    def resolve(self, target: str | None, current_path: str | None, current_theme: str | None) -> Optional[ResolvedTarget]:
        if not target:
            return None
        target = str(target).strip().rstrip("/")
        if not target:
            return None

        theme = current_theme or self.bot.default_theme() or ROOT_THEME
        current = _segments(current_path or "")

        # 1. "..", "../.."
        if UP_ONLY_RE.match(target):
            ups = target.count("..")
            return ResolvedTarget(theme, _join(current[:max(len(current) - ups, 0)]))

        # 2. "../sibling", "../../other/leaf"
        m = UP_THEN_DOWN_RE.match(target)
        if m:
            ups = m.group(1).count("..")
            base = current[:max(len(current) - ups, 0)]
            return ResolvedTarget(theme, _join(base + _segments(m.group(2))))

        # 3. "./child"
        if target.startswith("./"):
            return ResolvedTarget(theme, _join(current + _segments(target[2:])))

        # 4. bare child name
        if not target.startswith((".", "/")) and "/" not in target:
            child = _join(current + [target])
            if self._exists(theme, child):
                return ResolvedTarget(theme, child)

        # 5. absolute
        if target.startswith("/"):
            return self._resolve_absolute(target, theme)

        # 6. fallback
        candidate = _join(current + _segments(target))
        if self._exists(theme, candidate):
            return ResolvedTarget(theme, candidate)
        candidate = _join(_segments(target))
        if self._exists(theme, candidate):
            return ResolvedTarget(theme, candidate)
        return ResolvedTarget(theme, candidate)

    def _resolve_absolute(self, target: str, theme: str) -> ResolvedTarget:
        parts = _segments(target)
        state_path = _join(parts)

        if len(parts) == 1:
            if self._exists(ROOT_THEME, state_path):
                return ResolvedTarget(ROOT_THEME, state_path)
            if self._exists(theme, state_path):
                return ResolvedTarget(theme, state_path)
        elif len(parts) > 1:
            candidate_theme = "/" + parts[0]
            if self.bot.has_theme(candidate_theme):
                return ResolvedTarget(candidate_theme, _join(parts[1:]))
            if self._exists(ROOT_THEME, state_path):
                return ResolvedTarget(ROOT_THEME, state_path)
            if self._exists(theme, state_path):
                return ResolvedTarget(theme, state_path)

        return ResolvedTarget(theme, state_path)

    def resolve_existing(self, target: str | None, current_path: str | None, current_theme: str | None) -> ResolvedTarget:
        resolved = self.resolve(target, current_path, current_theme)
        if resolved is None or not self.bot.has_state(resolved):
            raise PathResolverError(f"State '{target}' not found", path=target)
        return resolved
