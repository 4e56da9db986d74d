"""
Dependency resolver handed to route and method handlers.

Handlers ask for collaborators explicitly by kind and name::

    users = ctx.resolver.resolve("rack", "user")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from duck_api.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

Provider = Callable[[str], Any]


class DependencyResolver:
    """Maps a dependency kind (``rack``, ``gateway``...) to a provider function."""

    def __init__(self, providers: dict[str, Provider] | None = None):
        self._providers: dict[str, Provider] = dict(providers or {})

    def register(self, kind: str, provider: Provider) -> None:
        """Register (or replace) the provider for ``kind``."""
        if kind in self._providers:
            logger.debug(f"Replacing provider for dependency kind '{kind}'")
        self._providers[kind] = provider

    def resolve(self, kind: str, name: str) -> Any:
        """
        Return the ``name`` dependency of the given ``kind``.

        Raises:
            ConfigurationError: If no provider handles ``kind``
        """
        provider = self._providers.get(kind)
        if provider is None:
            raise ConfigurationError(f"Unknown dependency kind '{kind}'")
        return provider(name)

    @property
    def kinds(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._providers
