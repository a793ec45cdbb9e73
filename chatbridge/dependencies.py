"""FastAPI dependency providers for the routing components."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends

from chatbridge.config import RoutingConfig, Settings, build_routing_config, get_settings
from chatbridge.services.automation_service import AutomationClient
from chatbridge.services.rate_limiter import RateLimiter, build_counter_store
from chatbridge.services.routing_service import RoutingDependencies
from chatbridge.services.telegram_service import HumanNotifier, build_human_notifier


@lru_cache
def get_routing_config() -> RoutingConfig:
    return build_routing_config(get_settings())


@lru_cache
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        build_counter_store(settings.redis_url),
        limit=settings.rate_limit_max_messages,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_automation_client() -> AutomationClient:
    return AutomationClient()


def get_human_notifier(settings: Settings = Depends(get_settings)) -> Optional[HumanNotifier]:
    return build_human_notifier(
        settings.telegram_bot_token,
        settings.telegram_chat_id,
        settings.telegram_timeout_seconds,
    )


def get_routing_dependencies(
    config: RoutingConfig = Depends(get_routing_config),
    limiter: RateLimiter = Depends(get_rate_limiter),
    automation: AutomationClient = Depends(get_automation_client),
    notifier: Optional[HumanNotifier] = Depends(get_human_notifier),
) -> RoutingDependencies:
    return RoutingDependencies(config=config, limiter=limiter, automation=automation, notifier=notifier)
