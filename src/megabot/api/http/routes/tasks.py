"""Background task and schedule endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from megabot.api.service import MegabotService

from ..dependencies import get_service
from ..schemas import ScheduledTaskListResponse, TaskListResponse, TaskResponse

router = APIRouter(prefix="/api", tags=["tasks"])


def _task_to_response(task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        type=task.type.value,
        status=task.status.value,
        agent_id=task.agent_id,
        conversation_id=task.conversation_id,
        origin_conversation_id=task.origin_conversation_id,
        input=task.input,
        result=task.result,
        error=task.error,
        attempts=task.attempts,
        created_at=task.created_at,
        completed_at=task.completed_at,
    )


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = 50,
    service: MegabotService = Depends(get_service),
) -> TaskListResponse:
    tasks = await service.list_tasks(status=status_filter, limit=limit)
    return TaskListResponse(tasks=[_task_to_response(t) for t in tasks])


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    service: MegabotService = Depends(get_service),
) -> TaskResponse:
    task = await service.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Task not found: {task_id}"
        )
    return _task_to_response(task)


@router.get("/scheduled-tasks", response_model=ScheduledTaskListResponse)
async def list_scheduled_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    service: MegabotService = Depends(get_service),
) -> ScheduledTaskListResponse:
    tasks = await service.list_scheduled_tasks(status_filter)
    return ScheduledTaskListResponse(scheduled_tasks=[t.to_summary() for t in tasks])
