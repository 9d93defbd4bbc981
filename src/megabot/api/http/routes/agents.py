"""Agent definition and spawn endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from megabot.api.service import MegabotService

from ..dependencies import get_service
from ..schemas import AgentCreate, AgentListResponse, AgentResponse, SpawnRequest, SpawnResponse

router = APIRouter(prefix="/api/agents", tags=["agents"])


def _agent_to_response(agent) -> AgentResponse:
    return AgentResponse(
        id=agent.id,
        name=agent.name,
        prompt=agent.prompt,
        tools=agent.tools,
        model=agent.model,
        tier=agent.tier.value if agent.tier else None,
        created_by=agent.created_by.value if agent.created_by else None,
        created_at=agent.created_at,
    )


@router.get("", response_model=AgentListResponse)
async def list_agents(
    created_by: str | None = None,
    service: MegabotService = Depends(get_service),
) -> AgentListResponse:
    agents = await service.list_agents(created_by)
    return AgentListResponse(agents=[_agent_to_response(a) for a in agents])


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    data: AgentCreate,
    service: MegabotService = Depends(get_service),
) -> AgentResponse:
    agent = await service.create_agent(
        name=data.name,
        prompt=data.prompt,
        tools=data.tools,
        model=data.model,
        tier=data.tier.value if data.tier else None,
    )
    return _agent_to_response(agent)


@router.post(
    "/{agent_id}/spawn", response_model=SpawnResponse, status_code=status.HTTP_202_ACCEPTED
)
async def spawn_agent(
    agent_id: str,
    data: SpawnRequest,
    service: MegabotService = Depends(get_service),
) -> SpawnResponse:
    """Run an agent in the background. Unknown agents map to 404."""
    task_id = await service.spawn_agent(agent_id, data.input, conversation_id=data.conversation_id)
    return SpawnResponse(task_id=task_id)
