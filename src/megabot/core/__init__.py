"""Orchestration core: routing, the tool loop, detached streams and background work."""

from megabot.core.app import MegabotApp
from megabot.core.chat import ChatHandler, ChatResponse
from megabot.core.dispatcher import BackgroundDispatcher
from megabot.core.jobs import JobContext, JobQueue
from megabot.core.router import ModelRouter, RouteResult
from megabot.core.runner import AgentRunner, AgentRunParams, AgentRunResult
from megabot.core.streams import ChatStreamManager, find_current_turn_start

__all__ = [
    "AgentRunParams",
    "AgentRunResult",
    "AgentRunner",
    "BackgroundDispatcher",
    "ChatHandler",
    "ChatResponse",
    "ChatStreamManager",
    "JobContext",
    "JobQueue",
    "MegabotApp",
    "ModelRouter",
    "RouteResult",
    "find_current_turn_start",
]
