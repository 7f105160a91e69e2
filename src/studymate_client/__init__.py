"""StudyMate document Q&A client."""

from .config import Settings
from .services.chat import ChatController
from .services.conversation import ConversationStore
from .services.postprocessor import process
from .services.sessions import ChatSessionManager, SessionState

__all__ = [
    "ChatController",
    "ChatSessionManager",
    "ConversationStore",
    "SessionState",
    "Settings",
    "process",
]
