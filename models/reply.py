# models/reply.py
from dataclasses import dataclass, field
from typing import List

OPTIONS_HEADER = "Options:"
OPTION_PREFIX = "- "


@dataclass
class FormattedReply:
    answers: List[str] = field(default_factory=list)
    buttons: List[str] = field(default_factory=list)


def render_options(labels: List[str]) -> str:
    return f"\n\n{OPTIONS_HEADER}\n" + "\n".join(f"{OPTION_PREFIX}{label}" for label in labels)


def format_reply(reply: str | None) -> FormattedReply:
    """
    Splits a reply string into answer lines and the button labels of every
    Options section, in order and without duplicates.
    """
    result = FormattedReply()
    if not reply:
        return result

    in_options = False
    for line in reply.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped == OPTIONS_HEADER:
            in_options = True
            continue
        if in_options and stripped.startswith(OPTION_PREFIX.strip()):
            label = stripped[1:].strip()
            if label and label not in result.buttons:
                result.buttons.append(label)
            continue
        in_options = False
        result.answers.append(line.rstrip())
    return result
