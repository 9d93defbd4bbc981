"""Agent tools: define, list and spawn background agents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from megabot.errors import AgentNotFoundError
from megabot.persistence.models import AgentCreator, AgentDefinition, ModelTier
from megabot.persistence.store import Store
from megabot.plugins.base import ToolPlugin
from megabot.tools.base import BaseTool, PermissionLevel, ToolContext, ToolRegistry, ToolResult

if TYPE_CHECKING:
    from megabot.core.dispatcher import BackgroundDispatcher

logger = logging.getLogger(__name__)


class CreateAgentTool(BaseTool):
    name = "create_agent"
    description = (
        "Define a new agent with its own system prompt and tool access. "
        "Agents run in the background and can use any registered tools. "
        "Use this when a task would benefit from a dedicated, scoped assistant."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "Short, descriptive agent name (e.g. 'research-agent')",
            },
            "prompt": {
                "type": "string",
                "description": "System prompt for this agent. Define its role, goals, and constraints.",
            },
            "tools": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Tool names this agent can use. Use search_tools first to discover available tools.",
            },
            "model": {
                "type": "string",
                "description": "Optional model ID override (e.g. 'openai:gpt-4o')",
            },
            "tier": {
                "type": "string",
                "enum": [t.value for t in ModelTier],
                "description": (
                    "Model tier. 'fast' for quick tasks, 'standard' for general work, "
                    "'powerful' for complex reasoning."
                ),
            },
        },
        "required": ["name", "prompt", "tools"],
    }
    permissions = PermissionLevel.WRITE
    keywords = ["agent", "create", "define", "assistant", "delegate"]

    def __init__(self, store: Store, registry: ToolRegistry) -> None:
        self.store = store
        self.registry = registry

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        tools = list(params.get("tools") or [])
        known = set(self.registry.names())
        invalid = [t for t in tools if t not in known]
        if invalid:
            return ToolResult.fail(
                f"Unknown tool(s): {', '.join(invalid)}. "
                "Use search_tools to discover available tools."
            )

        tier = params.get("tier")
        agent = await self.store.create_agent(
            AgentDefinition(
                name=params["name"],
                prompt=params["prompt"],
                tools=tools,
                model=params.get("model"),
                tier=ModelTier(tier) if tier else None,
                created_by=AgentCreator.BOT,
            )
        )
        return ToolResult.ok(
            {
                "id": agent.id,
                "name": agent.name,
                "tools": agent.tools,
                "model": agent.model,
                "tier": tier,
            }
        )


class ListAgentsTool(BaseTool):
    name = "list_agents"
    description = "List all defined agents. Returns their IDs, names, tools, and creation info."
    parameters = {
        "type": "object",
        "properties": {
            "created_by": {
                "type": "string",
                "enum": [c.value for c in AgentCreator],
                "description": "Optional filter by creator type",
            },
        },
        "required": [],
    }
    permissions = PermissionLevel.READ
    keywords = ["agent", "agents", "list"]

    def __init__(self, store: Store) -> None:
        self.store = store

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        created_by = params.get("created_by")
        agents = await self.store.list_agents(AgentCreator(created_by) if created_by else None)
        return ToolResult.ok([a.to_summary() for a in agents])


class SpawnAgentTool(BaseTool):
    name = "spawn_agent"
    description = (
        "Run an agent in the background. The agent will execute its tool-call loop "
        "and deliver the result back to the current conversation when done. "
        "Returns immediately with a task ID."
    )
    parameters = {
        "type": "object",
        "properties": {
            "agent_id": {
                "type": "string",
                "description": "ID of the agent to spawn (from create_agent or list_agents)",
            },
            "input": {
                "type": "string",
                "description": "The task or question for the agent. Be specific about what you want it to do.",
            },
        },
        "required": ["agent_id", "input"],
    }
    permissions = PermissionLevel.WRITE
    keywords = ["agent", "spawn", "background", "run", "delegate"]

    def __init__(self, dispatcher: BackgroundDispatcher) -> None:
        self.dispatcher = dispatcher

    async def execute(self, params: dict[str, Any], context: ToolContext) -> ToolResult:
        agent_id = params["agent_id"]
        agent = await self.dispatcher.store.get_agent(agent_id)
        if agent is None:
            return ToolResult.fail(
                f'Agent "{agent_id}" not found. Use list_agents to see available agents.'
            )
        if not context.conversation_id:
            return ToolResult.fail("Cannot spawn agent outside of a conversation context.")
        if not context.message_id:
            return ToolResult.fail("Missing message context for agent spawn.")

        try:
            task_id = await self.dispatcher.spawn_agent(agent_id, params["input"], context)
        except AgentNotFoundError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(
            {
                "task_id": task_id,
                "agent_name": agent.name,
                "status": "dispatched",
                "message": (
                    f'Agent "{agent.name}" has been dispatched. It will work in the '
                    "background and deliver results when done."
                ),
            }
        )


class AgentsPlugin(ToolPlugin):
    id = "agents"
    name = "Agents"
    description = "Create, list, and spawn background agents"

    def __init__(self, store: Store, registry: ToolRegistry, dispatcher: BackgroundDispatcher) -> None:
        super().__init__(
            [CreateAgentTool(store, registry), ListAgentsTool(store), SpawnAgentTool(dispatcher)]
        )

    async def after_tool_call(
        self, tool_name: str, params: dict[str, Any], context: ToolContext, result: ToolResult
    ) -> None:
        if not result.success:
            logger.warning("Agent tool %s failed: %s", tool_name, result.error)
        elif tool_name == "create_agent":
            logger.info("Agent created: %s", params.get("name"))
        elif tool_name == "spawn_agent":
            logger.info("Agent spawned: %s", params.get("agent_id"))
