# models/context.py
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ConversationContext:
    """Per-session data visible to scripts. Only scripts mutate the dicts."""
    session: Dict[str, Any] = field(default_factory=dict)
    client: Dict[str, Any] = field(default_factory=dict)
    request: Dict[str, Any] = field(default_factory=dict)
    input: Optional[str] = None
