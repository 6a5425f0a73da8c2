# File: logic/script_host.py
from __future__ import annotations
import ast
import asyncio
import builtins
import datetime
import functools
import inspect
import itertools
import json
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from logic.bot_ast import ResolvedTarget
from logic.triggers import Button
from models.context import ConversationContext
from utils.config_utils import DEFAULT_SCRIPT_TIMEOUT
from utils.logger import bot_execution_logger, bot_script_logger

FETCH_TIMEOUT = 10.0

SAFE_BUILTINS: Dict[str, Any] = {
    name: getattr(builtins, name) for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
        "format", "int", "isinstance", "len", "list", "map", "max", "min", "range",
        "repr", "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
        "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
        "ZeroDivisionError", "RuntimeError",
    )
}


class ScriptTimeout(BaseException):
    """BaseException so that `except Exception` inside a script cannot swallow it."""


class BotScriptError(Exception):
    def __init__(
        self,
        message: str,
        script_path: str | None = None,
        line_num: int | None = None,
        line_content: str | None = None,
        original_exception: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.script_path = script_path
        self.line_num = line_num
        self.line_content = line_content
        self.original_exception = original_exception

    def __str__(self):
        loc = ""
        if self.script_path:
            loc += f'Script "{self.script_path}"'
            if self.line_num:
                loc += f", line {self.line_num}"
        if self.line_content:
            loc += f'\n  Line: "{self.line_content.strip()}"'
        caused_by_msg = ""
        if self.original_exception:
            caused_by_msg = f"\n  Caused by: {type(self.original_exception).__name__}: {self.original_exception}"
        return f"BotScriptError: {self.message}{caused_by_msg}\n  Location: {loc}"


# Frame, code and traceback attributes lead back to host module globals.
INTROSPECTION_PREFIXES = ("gi_", "cr_", "ag_", "f_", "tb_", "co_")
INTROSPECTION_NAMES = frozenset({"mro", "func_globals", "func_code"})


def _is_forbidden_attribute(attr: str) -> bool:
    return attr.startswith("_") or attr.startswith(INTROSPECTION_PREFIXES) or attr in INTROSPECTION_NAMES


class _ScriptGuard(ast.NodeVisitor):
    def __init__(self, filename: str):
        self.filename = filename

    def _reject(self, node: ast.AST, message: str):
        raise BotScriptError(message, script_path=self.filename, line_num=getattr(node, "lineno", None))

    def visit_Import(self, node):
        self._reject(node, "import is not available in bot scripts")

    visit_ImportFrom = visit_Import

    def visit_ClassDef(self, node):
        self._reject(node, "class definitions are not available in bot scripts")

    def visit_Attribute(self, node):
        if _is_forbidden_attribute(node.attr):
            self._reject(node, f"access to '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node):
        if node.id.startswith("__"):
            self._reject(node, f"access to '{node.id}' is not allowed")

    def visit_ExceptHandler(self, node):
        if node.type is None:
            self._reject(node, "bare 'except:' is not allowed, catch Exception instead")
        self.generic_visit(node)


@functools.lru_cache(maxsize=1024)
def compile_script(source: str, filename: str, mode: str = "exec"):
    """Parses, checks and compiles script or expression source. Top-level await is allowed."""
    tree = ast.parse(source, filename=filename, mode=mode)
    _ScriptGuard(filename).visit(tree)
    return compile(tree, filename, mode, flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT)


def is_coroutine_code(code) -> bool:
    return bool(code.co_flags & inspect.CO_COROUTINE)


@contextmanager
def deadline(seconds: float):
    """Interrupts pure-Python code running past `seconds` of wall-clock time."""
    limit = time.monotonic() + seconds
    previous = sys.gettrace()

    def tracer(frame, event, arg):
        if time.monotonic() > limit:
            raise ScriptTimeout(f"Script exceeded {seconds:g}s")
        return tracer

    sys.settrace(tracer)
    try:
        yield
    finally:
        sys.settrace(previous)


async def drive_coroutine(coro, limit: float) -> Any:
    """
    Steps a script coroutine by hand until `limit` (a time.monotonic() value).
    Each resumption runs under the deadline tracer, so code that spins between
    two awaits is interrupted as well as code that waits too long.
    """
    pending = None
    try:
        while True:
            remaining = limit - time.monotonic()
            if remaining <= 0:
                raise ScriptTimeout("Script exceeded its time limit")
            with deadline(remaining):
                try:
                    pending = coro.send(None)
                except StopIteration as stop:
                    return stop.value
            if pending is None:
                # bare yield, as in sleep(0)
                await asyncio.sleep(0)
                continue
            if not isinstance(pending, asyncio.Future):
                raise RuntimeError(f"Script awaited an unsupported object: {pending!r}")
            pending._asyncio_future_blocking = False
            done, _ = await asyncio.wait({pending}, timeout=max(limit - time.monotonic(), 0.0))
            if not done:
                raise ScriptTimeout("Script exceeded its time limit")
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
        coro.close()


def _error_line(exc: BaseException, filename: str) -> Optional[int]:
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == filename:
            line = tb.tb_lineno
        tb = tb.tb_next
    if line is None and isinstance(exc, SyntaxError) and exc.filename == filename:
        line = exc.lineno
    return line


def _line_of(source: str, line_num: Optional[int]) -> Optional[str]:
    if not line_num:
        return None
    lines = source.split("\n")
    if 0 < line_num <= len(lines):
        return lines[line_num - 1]
    return None


async def fetch_json(url: str, method: str = "GET", params: dict | None = None, body: Any = None,
                     headers: dict | None = None, timeout: float = FETCH_TIMEOUT) -> Any:
    def _do():
        response = requests.request(method, url, params=params, json=body, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response.json()
    return await asyncio.to_thread(_do)


async def fetch_text(url: str, method: str = "GET", params: dict | None = None, body: Any = None,
                     headers: dict | None = None, timeout: float = FETCH_TIMEOUT) -> str:
    def _do():
        response = requests.request(method, url, params=params, json=body, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response.text
    return await asyncio.to_thread(_do)


@dataclass(frozen=True)
class TransitionRequest:
    target: str
    deferred: bool = False


@dataclass
class ScriptResult:
    answers: List[str] = field(default_factory=list)
    buttons: List[Button] = field(default_factory=list)
    transition: Optional[TransitionRequest] = None
    failed: bool = False


class Reactions:
    """The `reactions` object scripts use to emit answers, buttons and transitions."""

    def __init__(self, resolve_target: Callable[[str], Optional[ResolvedTarget]]):
        self._resolve_target = resolve_target
        self._answers: List[str] = []
        self._buttons: List[Button] = []
        self._transition: Optional[TransitionRequest] = None

    def answer(self, text: Any):
        self._answers.append("" if text is None else str(text))

    def buttons(self, arg: Any):
        """
        Accepts a label, a list of labels or items, a {"text", "transition"}
        dict, a {"buttons": [...]} dict, or a (label, target) tuple.
        """
        if arg is None:
            return
        if isinstance(arg, str):
            self._add_button(arg, None)
        elif isinstance(arg, dict):
            if "buttons" in arg:
                self.buttons(arg["buttons"])
            else:
                self._add_button(arg.get("text") or arg.get("label"), arg.get("transition") or arg.get("target"))
        elif isinstance(arg, tuple) and len(arg) == 2 and isinstance(arg[0], str):
            self._add_button(arg[0], arg[1])
        elif isinstance(arg, (list, tuple)):
            for item in arg:
                self.buttons(item)
        else:
            self._add_button(str(arg), None)

    def _add_button(self, label: Any, target: Any):
        if label is None or str(label).strip() == "":
            bot_script_logger.warning("reactions.buttons: button without a label ignored")
            return
        label = str(label).strip()
        if not target:
            self._buttons.append(Button(label=label))
            return
        target = str(target).strip()
        resolved = self._resolve_target(target)
        if resolved is None:
            bot_script_logger.warning(f"reactions.buttons: target '{target}' of button '{label}' not found, button is inert")
            self._buttons.append(Button(label=label))
            return
        self._buttons.append(Button(label=label, target=target, resolved=resolved))

    def transition(self, arg: Any):
        if self._transition is not None:
            bot_execution_logger.debug(f"reactions.transition({arg!r}) ignored, already requested {self._transition}")
            return
        if isinstance(arg, dict):
            target = arg.get("value") or arg.get("target")
            deferred = bool(arg.get("deferred", False))
        else:
            target, deferred = arg, False
        if not target:
            bot_script_logger.warning("reactions.transition called without a target")
            return
        self._transition = TransitionRequest(str(target).strip(), deferred)

    def result(self) -> ScriptResult:
        return ScriptResult(list(self._answers), list(self._buttons), self._transition)


class ScriptHost:
    """
    Execution context of one session. Scripts and ${} expressions run in a
    persistent namespace holding only restricted builtins, host utilities,
    helper functions and the conversation bindings.
    """

    def __init__(
        self,
        context: ConversationContext,
        resolve_target: Callable[[str], Optional[ResolvedTarget]],
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
    ):
        self.context = context
        self.timeout = timeout
        self._resolve_target = resolve_target
        self._timer_ids = itertools.count(1)
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self.namespace: Dict[str, Any] = self._build_namespace()
        self.refresh_bindings()

    def _build_namespace(self) -> Dict[str, Any]:
        return {
            "__builtins__": dict(SAFE_BUILTINS),
            "__name__": "__bot__",
            "json": SimpleNamespace(dumps=json.dumps, loads=json.loads),
            "now": datetime.datetime.now,
            "time": time.time,
            "sleep": asyncio.sleep,
            "set_timeout": self.set_timeout,
            "set_interval": self.set_interval,
            "clear_timeout": self.clear_timer,
            "clear_interval": self.clear_timer,
            "fetch_json": fetch_json,
            "fetch_text": fetch_text,
            "log": self._script_log,
            "print": self._script_log,
            "reactions": Reactions(self._resolve_target),
        }

    def _script_log(self, *args: Any):
        bot_script_logger.info(" ".join(str(a) for a in args))

    def refresh_bindings(self):
        ctx = self.context
        self.namespace.update(
            context=ctx,
            client=ctx.client,
            session=ctx.session,
            request=ctx.request,
            input=ctx.input or "",
        )

    def load_helper(self, source: str, name: str) -> bool:
        filename = f"<bot-helper:{name}>"
        try:
            code = compile_script(source, filename)
            if is_coroutine_code(code):
                raise BotScriptError("top-level await is not allowed in helper scripts", script_path=name)
            with deadline(self.timeout):
                exec(code, self.namespace)
            bot_execution_logger.debug(f"Loaded helper script: {name}")
            return True
        except BotScriptError as e:
            bot_script_logger.error(str(e))
        except ScriptTimeout as e:
            bot_script_logger.error(f"Helper script {name} timed out: {e}")
        except Exception as e:
            err = BotScriptError(
                f"Error loading helper script: {type(e).__name__} - {e}",
                script_path=name, line_num=_error_line(e, filename),
                line_content=_line_of(source, _error_line(e, filename)), original_exception=e,
            )
            bot_script_logger.error(str(err), exc_info=True)
        return False

    def load_helpers(self, helpers: Iterable[tuple[str, str]]):
        for name, source in helpers:
            self.load_helper(source, name)

    async def _run_code(self, code) -> Any:
        limit = time.monotonic() + self.timeout
        if is_coroutine_code(code):
            return await drive_coroutine(eval(code, self.namespace), limit)
        with deadline(self.timeout):
            result = eval(code, self.namespace)
        if inspect.iscoroutine(result):
            return await drive_coroutine(result, limit)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=max(limit - time.monotonic(), 0.0))
        return result

    async def run(self, body: str, label: str = "script") -> ScriptResult:
        """
        Executes one script tag. Faults and timeouts are logged and produce an
        empty ScriptResult; context mutations made before the fault persist.
        """
        filename = f"<bot-script:{label}>"
        reactions = Reactions(self._resolve_target)
        self.refresh_bindings()
        self.namespace["reactions"] = reactions
        try:
            code = compile_script(body, filename)
            await self._run_code(code)
        except (ScriptTimeout, asyncio.TimeoutError):
            bot_script_logger.error(f"Script {label} timed out after {self.timeout:g}s, effects discarded")
            return ScriptResult(failed=True)
        except BotScriptError as e:
            bot_script_logger.error(str(e))
            return ScriptResult(failed=True)
        except Exception as e:
            line = _error_line(e, filename)
            err = BotScriptError(
                f"Error executing script: {type(e).__name__} - {e}",
                script_path=label, line_num=line, line_content=_line_of(body, line), original_exception=e,
            )
            bot_script_logger.error(str(err), exc_info=True)
            return ScriptResult(failed=True)

        result = reactions.result()
        bot_execution_logger.debug(
            f"Script {label} finished: {len(result.answers)} answer(s), {len(result.buttons)} button(s), transition={result.transition}"
        )
        return result

    async def evaluate(self, expr: str) -> Any:
        """Evaluates a ${} expression; errors propagate to the caller."""
        self.refresh_bindings()
        code = compile_script(expr.strip(), "<bot-expr>", "eval")
        return await self._run_code(code)

    # ---- timers ----

    def set_timeout(self, seconds: float, fn: Callable, *args: Any) -> int:
        return self._schedule(float(seconds), fn, args, repeat=False)

    def set_interval(self, seconds: float, fn: Callable, *args: Any) -> int:
        return self._schedule(float(seconds), fn, args, repeat=True)

    def _schedule(self, seconds: float, fn: Callable, args: tuple, repeat: bool, timer_id: int | None = None) -> int:
        loop = asyncio.get_running_loop()
        timer_id = timer_id or next(self._timer_ids)
        self._timers[timer_id] = loop.call_later(max(seconds, 0.0), self._fire_timer, timer_id, seconds, fn, args, repeat)
        return timer_id

    def _fire_timer(self, timer_id: int, seconds: float, fn: Callable, args: tuple, repeat: bool):
        if repeat:
            self._schedule(seconds, fn, args, repeat=True, timer_id=timer_id)
        else:
            self._timers.pop(timer_id, None)
        try:
            self.refresh_bindings()
            with deadline(self.timeout):
                result = fn(*args)
            if inspect.iscoroutine(result):
                task = asyncio.ensure_future(drive_coroutine(result, time.monotonic() + self.timeout))
                task.add_done_callback(self._timer_task_done)
            elif inspect.isawaitable(result):
                task = asyncio.ensure_future(asyncio.wait_for(result, timeout=self.timeout))
                task.add_done_callback(self._timer_task_done)
        except ScriptTimeout as e:
            bot_script_logger.error(f"Timer callback {timer_id} timed out: {e}")
        except Exception as e:
            bot_script_logger.error(f"Timer callback {timer_id} failed: {type(e).__name__} - {e}", exc_info=True)

    def _timer_task_done(self, task: asyncio.Future):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            bot_script_logger.error(f"Async timer callback failed: {type(exc).__name__} - {exc}")

    def clear_timer(self, timer_id: int):
        handle = self._timers.pop(timer_id, None)
        if handle is not None:
            handle.cancel()

    def close(self):
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
