"""Conversation memory for chat sessions."""
from docqa.memory.manager import ConversationManager, SessionNotFound

__all__ = ["ConversationManager", "SessionNotFound"]
