# logic/substitution.py
import json
import re
from typing import Any

from logic.script_host import ScriptHost, ScriptTimeout
from utils.logger import bot_script_logger

EXPRESSION_RE = re.compile(r"\$\{([^}]+)\}")

DANGEROUS_TAGS = ("script", "iframe", "object", "embed", "svg")

_EVENT_HANDLER_RE = re.compile(r"\s+on\w+\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)
_SCHEME_RE = re.compile(r"\b(?:javascript|data)\s*:", re.IGNORECASE)
_DANGEROUS_ATTR_RE = re.compile(r"\s(?:srcdoc|formaction|poster|sandbox)\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)
_OPEN_TAG_RES = [re.compile(rf"<\s*{tag}\b[^>]*>", re.IGNORECASE) for tag in DANGEROUS_TAGS]
_CLOSE_TAG_RES = [re.compile(rf"</\s*{tag}\s*>", re.IGNORECASE) for tag in DANGEROUS_TAGS]
_LEFTOVER_OPEN_RES = [re.compile(rf"<(\s*{tag})", re.IGNORECASE) for tag in DANGEROUS_TAGS]


def _escape_brackets(match: re.Match) -> str:
    return match.group(0).replace("<", "&lt;").replace(">", "&gt;")


def sanitize_html(value: str) -> str:
    """
    Neutralizes markup in substituted values. Dangerous tags are escaped, not
    removed, so the rest of the author's HTML keeps working.
    """
    if not isinstance(value, str):
        return value
    v = _EVENT_HANDLER_RE.sub("", value)
    v = _SCHEME_RE.sub("", v)
    for open_re, close_re in zip(_OPEN_TAG_RES, _CLOSE_TAG_RES):
        v = open_re.sub(_escape_brackets, v)
        v = close_re.sub(_escape_brackets, v)
    for leftover_re in _LEFTOVER_OPEN_RES:
        v = leftover_re.sub(r"&lt;\1", v)
    v = _DANGEROUS_ATTR_RE.sub("", v)
    return v


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


class Substitutor:
    def __init__(self, host: ScriptHost):
        self.host = host

    async def _evaluate_span(self, expr: str) -> str:
        try:
            value = await self.host.evaluate(expr)
        except ScriptTimeout:
            bot_script_logger.error(f"Expression '${{{expr}}}' timed out")
            return ""
        except Exception as e:
            bot_script_logger.error(f"Error evaluating expression '${{{expr}}}': {type(e).__name__} - {e}")
            return ""
        return sanitize_html(stringify(value))

    async def substitute(self, text: str | None) -> str:
        if not text:
            return ""
        out = []
        pos = 0
        for m in EXPRESSION_RE.finditer(text):
            out.append(text[pos:m.start()])
            out.append(await self._evaluate_span(m.group(1)))
            pos = m.end()
        out.append(text[pos:])
        return "".join(out)
