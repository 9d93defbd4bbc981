"""Exception hierarchy for megabot."""

from __future__ import annotations


class MegabotError(Exception):
    pass


class RoutingError(MegabotError):
    """No provider/model satisfies a routing request."""


class NoProvidersError(RoutingError):
    pass


class ModelNotFoundError(RoutingError):
    def __init__(self, model_id: str) -> None:
        super().__init__(f'Model "{model_id}" not found in any registered LLM plugin')
        self.model_id = model_id


class RegistrationError(MegabotError):
    pass


class ToolRegistrationError(RegistrationError):
    pass


class PluginRegistrationError(RegistrationError):
    pass


class DispatchError(MegabotError):
    pass


class AgentNotFoundError(DispatchError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f'Agent "{agent_id}" not found')
        self.agent_id = agent_id


class TaskNotFoundError(DispatchError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f'Task "{task_id}" not found')
        self.task_id = task_id


class ScheduleError(MegabotError):
    """Invalid cron expression or one-shot timestamp."""
