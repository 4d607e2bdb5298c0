from relay_hub.integrations.assistant_cli import (
    SESSION_CONTINUING,
    SESSION_NEW,
    SessionBridge,
    TurnExecutor,
    sanitize_prompt,
)
from relay_hub.integrations.session_cache import SessionCache

__all__ = [
    "SESSION_CONTINUING",
    "SESSION_NEW",
    "SessionBridge",
    "SessionCache",
    "TurnExecutor",
    "sanitize_prompt",
]
