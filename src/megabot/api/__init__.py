"""Service layer and HTTP transport."""

from megabot.api.service import MegabotService

__all__ = ["MegabotService"]
