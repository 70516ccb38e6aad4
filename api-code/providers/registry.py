from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from domain import Provider, UnsupportedProviderError
from settings import Settings

from .base import BaseDeployAdapter
from .netlify import NetlifyAdapter
from .vercel import VercelAdapter


logger = logging.getLogger("devflow-deployer.providers")


class AdapterRegistry:
    """Maps provider names onto adapter instances."""

    def __init__(self, adapters: Optional[Iterable[BaseDeployAdapter]] = None) -> None:
        self._adapters: Dict[str, BaseDeployAdapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    def register(self, adapter: BaseDeployAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, provider: str) -> BaseDeployAdapter:
        adapter = self._adapters.get(str(getattr(provider, "value", provider)))
        if adapter is None:
            raise UnsupportedProviderError(str(provider), self.names())
        return adapter

    def names(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, provider: object) -> bool:
        return str(getattr(provider, "value", provider)) in self._adapters

    def __iter__(self):
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)


def build_adapter_registry(settings: Settings) -> AdapterRegistry:
    """Instantiate the adapters listed in ``DEPLOY_ENABLED_PROVIDERS``."""
    registry = AdapterRegistry()
    common = {
        "dry_run": settings.deploy_dry_run,
        "request_timeout": settings.provider_request_timeout_seconds,
    }
    for name in settings.enabled_providers:
        if name == Provider.VERCEL.value:
            registry.register(
                VercelAdapter(
                    settings.vercel_api_token,
                    settings.vercel_api_url,
                    team_id=settings.vercel_team_id,
                    **common,
                )
            )
        elif name == Provider.NETLIFY.value:
            registry.register(
                NetlifyAdapter(settings.netlify_api_token, settings.netlify_api_url, **common)
            )
        else:
            raise UnsupportedProviderError(name, [provider.value for provider in Provider])

    logger.info(
        "Registered provider adapters: %s (dry_run=%s)",
        ", ".join(registry.names()) or "none",
        settings.deploy_dry_run,
    )
    return registry
