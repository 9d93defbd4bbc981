"""Tests for model routing."""

from __future__ import annotations

import pytest

from conftest import MockProvider
from megabot.core.router import ModelRouter
from megabot.errors import ModelNotFoundError, NoProvidersError, RoutingError
from megabot.persistence.models import ModelTier
from megabot.providers.base import ModelDefinition


def make_router(*providers, default_tier=ModelTier.STANDARD) -> ModelRouter:
    return ModelRouter(lambda: list(providers), default_tier)


def test_no_providers():
    with pytest.raises(NoProvidersError):
        make_router().route()


def test_default_tier():
    route = make_router(MockProvider()).route()
    assert route.model.id == "mock-standard"
    assert route.qualified_id == "mock:mock-standard"


def test_requested_tier_string():
    route = make_router(MockProvider()).route(tier="fast")
    assert route.model.id == "mock-fast"


def test_tier_searched_across_providers_in_order():
    only_fast = MockProvider(
        provider_id="first", models=[ModelDefinition(id="f1", tier=ModelTier.FAST)]
    )
    second = MockProvider(provider_id="second")
    route = make_router(only_fast, second).route(tier=ModelTier.POWERFUL)
    assert route.provider is second
    assert route.model.id == "mock-powerful"


def test_falls_back_to_first_model_of_first_provider():
    provider = MockProvider(models=[ModelDefinition(id="only", tier=ModelTier.FAST)])
    route = make_router(provider).route(tier=ModelTier.POWERFUL)
    assert route.model.id == "only"


def test_explicit_model_wins_over_tier():
    route = make_router(MockProvider()).route(tier="fast", model_id="mock-powerful")
    assert route.model.id == "mock-powerful"


def test_qualified_model_id():
    a = MockProvider(provider_id="a")
    b = MockProvider(provider_id="b")
    route = make_router(a, b).route(model_id="b:mock-fast")
    assert route.provider is b
    assert route.model.id == "mock-fast"


def test_unknown_model():
    with pytest.raises(ModelNotFoundError) as excinfo:
        make_router(MockProvider()).route(model_id="gpt-9")
    assert excinfo.value.model_id == "gpt-9"
    assert "gpt-9" in str(excinfo.value)


def test_provider_without_models():
    with pytest.raises(RoutingError):
        make_router(MockProvider(models=[])).route()


def test_router_sees_providers_registered_later():
    providers: list = []
    router = ModelRouter(lambda: providers)
    with pytest.raises(NoProvidersError):
        router.route()
    providers.append(MockProvider())
    assert router.route().provider.id == "mock"
