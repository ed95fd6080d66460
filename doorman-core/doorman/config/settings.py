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

"""User settings, credentials, and provider detection.

Resolution order for every setting: the firewall config file, then the
environment, then ``~/.doorman/config.yaml``. Settings-file values written as
``env:VAR_NAME`` are read from that environment variable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from doorman.errors import ConfigFileError
from doorman.models.rules import ProviderType, UnifiedConfig

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".doorman"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

ENV_PROVIDER = "DOORMAN_PROVIDER"
ENV_VERCEL_TOKEN = "VERCEL_TOKEN"
ENV_VERCEL_PROJECT_ID = "VERCEL_PROJECT_ID"
ENV_VERCEL_TEAM_ID = "VERCEL_TEAM_ID"
ENV_CLOUDFLARE_API_TOKEN = "CLOUDFLARE_API_TOKEN"
ENV_CLOUDFLARE_ZONE_ID = "CLOUDFLARE_ZONE_ID"
ENV_CLOUDFLARE_ACCOUNT_ID = "CLOUDFLARE_ACCOUNT_ID"


def load_settings(path: Optional[Path] = None) -> dict:
    """Load user settings from ~/.doorman/config.yaml.

    Returns an empty dict if the file does not exist.

    Raises:
        ConfigFileError: If the file exists but is not a YAML mapping.
    """
    path = path or CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigFileError(f"Could not read settings from {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigFileError(f"Settings file {path} must contain a mapping")
    return data


def save_settings(settings: dict, path: Optional[Path] = None) -> Path:
    """Save user settings to ~/.doorman/config.yaml.

    Returns the path to the saved settings file.
    """
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(settings, f, default_flow_style=False, sort_keys=False)
    return path


def resolve_secret(value: Any, env: Mapping[str, str]) -> Optional[str]:
    """Resolve ``env:NAME`` references; other values pass through as text."""
    if value is None:
        return None
    text = str(value).strip()
    if text.startswith("env:"):
        return env.get(text[4:].strip()) or None
    return text or None


@dataclass
class Credentials:
    """Everything a provider adapter needs to talk to its API."""

    vercel_token: Optional[str] = None
    vercel_project_id: Optional[str] = None
    vercel_team_id: Optional[str] = None
    cloudflare_api_token: Optional[str] = None
    cloudflare_zone_id: Optional[str] = None
    cloudflare_account_id: Optional[str] = None


def resolve_credentials(
    config: Optional[UnifiedConfig] = None,
    env: Optional[Mapping[str, str]] = None,
    settings: Optional[dict] = None,
) -> Credentials:
    """Merge config-file ids, environment variables, and user settings."""
    env = os.environ if env is None else env
    settings = load_settings() if settings is None else settings
    vercel_settings = settings.get("vercel") or {}
    cloudflare_settings = settings.get("cloudflare") or {}

    providers = config.providers if config is not None else None
    vercel = providers.vercel if providers else None
    cloudflare = providers.cloudflare if providers else None

    def pick(from_config: Optional[str], env_name: str, section: dict, key: str) -> Optional[str]:
        return from_config or env.get(env_name) or resolve_secret(section.get(key), env)

    return Credentials(
        vercel_token=pick(None, ENV_VERCEL_TOKEN, vercel_settings, "token"),
        vercel_project_id=pick(vercel.project_id if vercel else None, ENV_VERCEL_PROJECT_ID, vercel_settings, "project_id"),
        vercel_team_id=pick(vercel.team_id if vercel else None, ENV_VERCEL_TEAM_ID, vercel_settings, "team_id"),
        cloudflare_api_token=pick(None, ENV_CLOUDFLARE_API_TOKEN, cloudflare_settings, "api_token"),
        cloudflare_zone_id=pick(cloudflare.zone_id if cloudflare else None, ENV_CLOUDFLARE_ZONE_ID, cloudflare_settings, "zone_id"),
        cloudflare_account_id=pick(
            cloudflare.account_id if cloudflare else None, ENV_CLOUDFLARE_ACCOUNT_ID, cloudflare_settings, "account_id"
        ),
    )


@dataclass
class ProviderDetection:
    provider: Optional[ProviderType]
    confidence: str  # "high", "medium", "low", "none"
    reasons: list[str] = field(default_factory=list)


def detect_provider(
    config: Optional[UnifiedConfig] = None,
    env: Optional[Mapping[str, str]] = None,
    settings: Optional[dict] = None,
) -> ProviderDetection:
    """Work out which provider a config targets.

    Priority order:
    1. The config's explicit ``provider`` field
    2. ``providers.cloudflare.zoneId``, then ``providers.vercel.projectId``
    3. DOORMAN_PROVIDER
    4. Provider credentials present in the environment
    5. ``default_provider`` in the user settings file
    """
    env = os.environ if env is None else env

    if config is not None and config.provider is not None:
        return ProviderDetection(config.provider, "high", ["provider field set in config"])

    providers = config.providers if config is not None else None
    if providers and providers.cloudflare and providers.cloudflare.zone_id:
        return ProviderDetection(ProviderType.CLOUDFLARE, "high", ["providers.cloudflare.zoneId set in config"])
    if providers and providers.vercel and providers.vercel.project_id:
        return ProviderDetection(ProviderType.VERCEL, "high", ["providers.vercel.projectId set in config"])

    explicit = env.get(ENV_PROVIDER, "").strip().lower()
    if explicit:
        try:
            return ProviderDetection(ProviderType(explicit), "high", [f"{ENV_PROVIDER}={explicit}"])
        except ValueError:
            logger.warning("Ignoring unknown %s value %r", ENV_PROVIDER, explicit)

    if env.get(ENV_CLOUDFLARE_ZONE_ID) or env.get(ENV_CLOUDFLARE_API_TOKEN):
        return ProviderDetection(ProviderType.CLOUDFLARE, "medium", ["Cloudflare credentials in environment"])
    if env.get(ENV_VERCEL_PROJECT_ID) or env.get(ENV_VERCEL_TOKEN):
        return ProviderDetection(ProviderType.VERCEL, "medium", ["Vercel credentials in environment"])

    settings = load_settings() if settings is None else settings
    default = str(settings.get("default_provider") or "").strip().lower()
    if default:
        try:
            return ProviderDetection(ProviderType(default), "low", [f"default_provider={default} in settings"])
        except ValueError:
            logger.warning("Ignoring unknown default_provider %r in settings", default)

    return ProviderDetection(None, "none", ["no provider configured"])
