# Doorman: Multi-Provider Firewall Rules as Code
# Copyright (C) 2026 Doorman Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Registry of provider adapters.

The CLI and orchestrator look providers up by name instead of importing
adapters directly, so a new provider only needs to register a factory.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from doorman.config.settings import Credentials
from doorman.errors import MissingCredentialsError, ProviderNotRegisteredError
from doorman.models.rules import ProviderType
from doorman.providers.base import FirewallProvider
from doorman.providers.cloudflare import CloudflareProvider
from doorman.providers.vercel import VercelProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Credentials], FirewallProvider]


def _require(provider: str, values: dict[str, Optional[str]]) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingCredentialsError(provider, missing)


def _vercel(credentials: Credentials) -> FirewallProvider:
    _require("vercel", {
        "VERCEL_TOKEN": credentials.vercel_token,
        "VERCEL_PROJECT_ID": credentials.vercel_project_id,
    })
    return VercelProvider(
        token=credentials.vercel_token,
        project_id=credentials.vercel_project_id,
        team_id=credentials.vercel_team_id,
    )


def _cloudflare(credentials: Credentials) -> FirewallProvider:
    _require("cloudflare", {
        "CLOUDFLARE_API_TOKEN": credentials.cloudflare_api_token,
        "CLOUDFLARE_ZONE_ID": credentials.cloudflare_zone_id,
    })
    return CloudflareProvider(
        api_token=credentials.cloudflare_api_token,
        zone_id=credentials.cloudflare_zone_id,
        account_id=credentials.cloudflare_account_id,
    )


class ProviderRegistry:
    """Maps provider names to adapter factories and caches built adapters."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, FirewallProvider] = {}

    def register(self, name: str | ProviderType, factory: ProviderFactory) -> None:
        key = _key(name)
        if key in self._factories:
            logger.debug("Replacing provider factory %r", key)
        self._factories[key] = factory
        self._instances.pop(key, None)

    def list_providers(self) -> list[str]:
        return sorted(self._factories)

    def is_registered(self, name: str | ProviderType) -> bool:
        return _key(name) in self._factories

    def create(self, name: str | ProviderType, credentials: Credentials) -> FirewallProvider:
        """Build a fresh adapter.

        Raises:
            ProviderNotRegisteredError: If nothing is registered under ``name``.
            MissingCredentialsError: If required credentials are absent.
        """
        key = _key(name)
        factory = self._factories.get(key)
        if factory is None:
            raise ProviderNotRegisteredError(key, self.list_providers())
        return factory(credentials)

    def get(self, name: str | ProviderType, credentials: Credentials) -> FirewallProvider:
        """Like ``create``, but reuses the adapter built on the first call."""
        key = _key(name)
        if key not in self._instances:
            self._instances[key] = self.create(key, credentials)
        return self._instances[key]

    def close(self) -> None:
        for provider in self._instances.values():
            provider.close()
        self._instances.clear()


def _key(name: str | ProviderType) -> str:
    return name.value if isinstance(name, ProviderType) else str(name).strip().lower()


def default_registry() -> ProviderRegistry:
    """A registry with the built-in Vercel and Cloudflare adapters."""
    registry = ProviderRegistry()
    registry.register(ProviderType.VERCEL, _vercel)
    registry.register(ProviderType.CLOUDFLARE, _cloudflare)
    return registry
