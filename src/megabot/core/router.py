"""Model routing: pick one (provider, model) pair per request."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from megabot.errors import ModelNotFoundError, NoProvidersError, RoutingError
from megabot.persistence.models import ModelTier
from megabot.providers.base import BaseProvider, ModelDefinition

logger = logging.getLogger(__name__)


@dataclass
class RouteResult:
    provider: BaseProvider
    model: ModelDefinition

    @property
    def qualified_id(self) -> str:
        return f"{self.provider.id}:{self.model.id}"


class ModelRouter:
    """Pure selection over the currently registered providers.

    Priority: explicit model id, then the first model tagged with the
    requested tier, then the first model of the first provider.
    """

    def __init__(
        self,
        providers: Callable[[], Sequence[BaseProvider]],
        default_tier: ModelTier = ModelTier.STANDARD,
    ) -> None:
        self._providers = providers
        self.default_tier = default_tier

    def route(self, tier: ModelTier | str | None = None, model_id: str | None = None) -> RouteResult:
        providers = list(self._providers())
        if not providers:
            raise NoProvidersError("No LLM plugins registered")

        if model_id:
            return self._find_model(providers, model_id)

        wanted = ModelTier(tier) if tier else self.default_tier
        for provider in providers:
            for model in provider.models:
                if model.tier == wanted:
                    return RouteResult(provider, model)

        first = providers[0]
        if not first.models:
            raise RoutingError(f'LLM plugin "{first.id}" has no models')
        logger.warning(
            "No model with tier %s, falling back to %s:%s",
            wanted.value,
            first.id,
            first.models[0].id,
        )
        return RouteResult(first, first.models[0])

    @staticmethod
    def _find_model(providers: list[BaseProvider], model_id: str) -> RouteResult:
        provider_id, sep, bare_id = model_id.partition(":")
        for provider in providers:
            if sep and provider.id != provider_id:
                continue
            target = bare_id if sep else model_id
            for model in provider.models:
                if model.id == target:
                    return RouteResult(provider, model)
        raise ModelNotFoundError(model_id)
