"""Conversation history, agent loop and simple request path."""

from collama.core.agent import Agent, AgentRun, AgentState, CancellationToken
from collama.core.history import ConversationHistory, HistoryError

__all__ = [
    "Agent",
    "AgentRun",
    "AgentState",
    "CancellationToken",
    "ConversationHistory",
    "HistoryError",
]
