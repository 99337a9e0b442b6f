"""AI client, provider abstraction and chat orchestration."""

from .client import AIClient, AIStreamEvent, ChatCompletionResult, ClientSettings

__all__ = ["AIClient", "AIStreamEvent", "ChatCompletionResult", "ClientSettings"]
