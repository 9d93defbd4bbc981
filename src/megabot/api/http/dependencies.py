"""Dependency injection helpers."""

from __future__ import annotations

from megabot.api.service import MegabotService

# Global service instance
_service: MegabotService | None = None


def set_service(service: MegabotService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


def get_service() -> MegabotService:
    """Dependency injection for MegabotService."""
    if _service is None:
        raise RuntimeError("MegabotService not initialized")
    return _service
