from .contracts import ChatContext, ChatResponse
from .engine import ChatEngine, EngineResult
from .session import ConversationSession, SessionStore

__all__ = [
    "ChatContext",
    "ChatEngine",
    "ChatResponse",
    "ConversationSession",
    "EngineResult",
    "SessionStore",
]

__version__ = "0.1.0"
