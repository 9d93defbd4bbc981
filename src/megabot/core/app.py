"""MegabotApp: wires all subsystems together and manages lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from megabot.bus import EventBus
from megabot.config import Settings
from megabot.core.chat import ChatHandler, ChatResponse
from megabot.core.dispatcher import BackgroundDispatcher
from megabot.core.jobs import JobQueue
from megabot.core.recorder import EventRecorder
from megabot.core.router import ModelRouter
from megabot.core.runner import AgentRunner
from megabot.core.streams import ChatStreamManager
from megabot.persistence.models import ModelTier
from megabot.persistence.store import Store
from megabot.plugins import CommPlugin, LLMPlugin, PluginRegistry, WebhookCommPlugin
from megabot.providers.base import BaseProvider
from megabot.providers.openai import OpenAIProvider
from megabot.tools.agents import AgentsPlugin
from megabot.tools.base import ToolRegistry
from megabot.tools.calculator import CalculatorPlugin
from megabot.tools.conversations import ConversationsPlugin
from megabot.tools.memory import MemoryPlugin
from megabot.tools.notifications import NotificationCenter, NotificationsPlugin
from megabot.tools.scheduler import SchedulerPlugin
from megabot.tools.system import SystemPlugin

logger = logging.getLogger(__name__)


class MegabotApp:
    """Top-level application that wires all subsystems together.

    Usage::

        app = MegabotApp(settings)
        await app.initialize()
        response = await app.send_message(None, "Remind me to stretch every hour")
        await app.streams.wait(response.conversation_id)
        await app.shutdown()

    ``providers`` replaces the providers built from settings (tests pass
    scripted providers here).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        providers: Sequence[BaseProvider] | None = None,
        comm_plugins: Sequence[CommPlugin] = (),
    ) -> None:
        self.settings = settings or Settings.load()
        self._providers = providers
        self._comm_plugins = list(comm_plugins)

        # Core subsystems
        self.bus = EventBus()
        self.store = Store(self.settings.db_path)

        # Plugins and tools
        self.tool_registry = ToolRegistry()
        self.plugins = PluginRegistry(self.tool_registry)
        self.notifications = NotificationCenter(self.plugins, self.bus)

        # Execution
        self.router = ModelRouter(self.plugins.providers, self.settings.default_tier)
        self.runner = AgentRunner(
            store=self.store,
            router=self.router,
            tool_registry=self.tool_registry,
            bus=self.bus,
            max_rounds=self.settings.max_tool_rounds,
            max_tokens=self.settings.max_tokens,
        )
        self.chat = ChatHandler(
            store=self.store,
            router=self.router,
            runner=self.runner,
            bus=self.bus,
            history_char_budget=self.settings.history_char_budget,
        )
        self.streams = ChatStreamManager(self.bus, buffer_ttl=self.settings.stream_buffer_ttl)

        # Background work
        self.jobs = JobQueue()
        self.dispatcher = BackgroundDispatcher(
            store=self.store,
            runner=self.runner,
            bus=self.bus,
            jobs=self.jobs,
            notifier=self.notifications.notify,
            retries=self.settings.background_retries,
            history_char_budget=self.settings.history_char_budget,
            schedule_tz=self.settings.schedule_tz,
        )
        self.recorder = EventRecorder(self.bus, self.store)

        self._scheduler: asyncio.Task | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Open the store and register every plugin."""
        if self._initialized:
            return
        if self.settings.db_path != ":memory:":
            self.settings.ensure_dirs()
        await self.store.initialize()

        self._register_llm_plugins()

        comm_plugins = list(self._comm_plugins)
        if self.settings.webhook_url:
            comm_plugins.append(WebhookCommPlugin(self.settings.webhook_url))
        for plugin in comm_plugins:
            self.plugins.register(plugin)

        tz = self.settings.schedule_tz
        for plugin in (
            SystemPlugin(self.tool_registry),
            AgentsPlugin(self.store, self.tool_registry, self.dispatcher),
            SchedulerPlugin(self.store, self.bus, tz),
            ConversationsPlugin(self.store),
            NotificationsPlugin(self.notifications),
            MemoryPlugin(self.store),
            CalculatorPlugin(),
        ):
            self.plugins.register(plugin)

        self.recorder.start()
        self._initialized = True
        logger.info(
            "megabot initialized: %d LLM plugin(s), %d tool(s), db=%s",
            len(self.plugins.llm_plugins()),
            len(self.tool_registry.list()),
            self.settings.db_path,
        )

    def _register_llm_plugins(self) -> None:
        if self._providers is not None:
            for provider in self._providers:
                self.plugins.register(LLMPlugin(provider))
            return

        for config in self.settings.providers:
            if config.resolve_api_key() is None and config.base_url is None:
                logger.warning("No API key for provider %s, skipping", config.id)
                continue
            self.plugins.register(
                LLMPlugin(OpenAIProvider(config), description=f"{config.name} chat completions")
            )

    async def send_message(
        self,
        conversation_id: str | None,
        message: str,
        model_id: str | None = None,
        tier: ModelTier | str | None = None,
    ) -> ChatResponse:
        """Start one chat turn detached from the caller.

        The turn keeps running if the caller goes away; observe it through
        ``self.streams``.
        """
        response = await self.chat.handle(conversation_id, message, model_id=model_id, tier=tier)
        self.streams.start_stream(response.conversation_id, response.stream)
        return response

    def start_scheduler(self) -> asyncio.Task:
        """Run the scheduler tick every ``settings.scheduler_interval`` seconds."""
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = self.jobs.every(
                self.settings.scheduler_interval,
                self.dispatcher.check_due_tasks,
                name="scheduler",
            )
        return self._scheduler

    async def shutdown(self) -> None:
        """Clean up resources."""
        await self.streams.shutdown()
        await self.jobs.shutdown()
        await self.recorder.stop()
        await self.plugins.shutdown()
        await self.store.close()
        self.bus.clear()
        self._initialized = False
