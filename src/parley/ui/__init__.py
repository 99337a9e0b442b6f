"""Qt presentation layer."""

from .chat_window import ChatContext, ChatWindow

__all__ = ["ChatContext", "ChatWindow"]
