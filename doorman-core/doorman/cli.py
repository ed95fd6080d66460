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

"""Doorman CLI: Typer entry point.

Commands:
- doorman validate   Check a config (and its translation for a provider)
- doorman migrate    Upgrade a legacy config to the current schema
- doorman translate  Print the provider-native form of every rule
- doorman diff       Show what a sync would change
- doorman sync       Apply the config to the provider
- doorman list       Show the provider's live rules
- doorman download   Write the provider's live rules into the config
- doorman compat     Compare what two providers can express
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from doorman import __version__
from doorman.config.loader import (
    LoadedConfig,
    adopt_remote_state,
    find_config_file,
    load_config,
    read_raw_config,
    write_config,
)
from doorman.config.migrator import migrate_config
from doorman.config.settings import detect_provider, resolve_credentials
from doorman.config.validator import compute_health, validate_config
from doorman.errors import ConfigFileError, ConfigValidationError, DoormanError, TranslationError
from doorman.models.changes import TranslationWarning
from doorman.models.rules import ActionType, ProviderType, UnifiedConfig
from doorman.providers.base import FirewallProvider
from doorman.providers.registry import default_registry
from doorman.reporter.console_out import (
    console,
    err_console,
    print_change_set,
    print_error,
    print_health,
    print_migration_report,
    print_remote_state,
    print_support_matrix,
    print_sync_result,
    print_translation_warnings,
    print_validation_report,
)
from doorman.reporter.json_out import to_canonical_json
from doorman.sync.orchestrator import SyncOrchestrator
from doorman.translate.compatibility import (
    get_action_support,
    get_field_support,
    known_fields,
    migration_report,
)
from doorman.translate.rule_translator import RuleTranslator

app = typer.Typer(
    name="doorman",
    help=(
        "Doorman: firewall rules as code for Vercel and Cloudflare. "
        "Run 'doorman <command> --help' for flags."
    ),
    add_completion=False,
)

logger = logging.getLogger("doorman")

_CONFIG_HELP = "Path to the config file (default: search upwards from the current directory)"
_PROVIDER_HELP = "Target provider: vercel or cloudflare (default: detected)"


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    for _name in ("httpcore", "httpx"):
        logging.getLogger(_name).setLevel(logging.WARNING)


def _fail(message: object) -> None:
    print_error(message)
    raise typer.Exit(code=1)


def _parse_provider(value: Optional[str]) -> Optional[ProviderType]:
    if value is None:
        return None
    try:
        return ProviderType(value.strip().lower())
    except ValueError:
        choices = ", ".join(p.value for p in ProviderType)
        _fail(f"Unknown provider {value!r} (choose from {choices})")


def _load(config_path: Optional[Path]) -> LoadedConfig:
    try:
        loaded = load_config(config_path)
    except ConfigValidationError as e:
        for issue in e.issues:
            print_error(issue)
        raise typer.Exit(code=1)
    except DoormanError as e:
        _fail(e)
    print_translation_warnings(loaded.migration.warnings, err_console)
    return loaded


def _target_provider(config: UnifiedConfig, option: Optional[str]) -> ProviderType:
    explicit = _parse_provider(option)
    if explicit is not None:
        return explicit
    detection = detect_provider(config)
    if detection.provider is None:
        _fail("Could not detect a provider; set 'provider' in the config or pass --provider")
    logger.info("Using provider %s (%s)", detection.provider.value, "; ".join(detection.reasons))
    return detection.provider


def _open_provider(name: ProviderType, config: UnifiedConfig) -> FirewallProvider:
    try:
        return default_registry().create(name, resolve_credentials(config))
    except DoormanError as e:
        _fail(e)


def _require_valid(config: UnifiedConfig, provider: ProviderType, output_json: bool) -> None:
    report = validate_config(config, provider)
    if report.valid:
        return
    if output_json:
        for issue in report.errors:
            print_error(issue)
    else:
        print_validation_report(report)
    raise typer.Exit(code=1)


@app.command()
def validate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Also check translation for this provider"),
    output_json: bool = typer.Option(False, "--json", help="Output the validation result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all output except errors"),
) -> None:
    """Validate a config file.

    Checks names, conditions, actions, rate-limit windows, and redirect
    targets. With a provider (from --provider or the config), every rule is
    also translated so unsupported fields and actions show up now.
    """
    _setup_logging(verbose, quiet)
    loaded = _load(config)
    target = _parse_provider(provider) or loaded.config.provider
    report = validate_config(loaded.config, target)
    health = compute_health(loaded.config, target)

    if output_json:
        print(to_canonical_json({
            "valid": report.valid,
            "errors": [vars(i) for i in report.errors],
            "warnings": [vars(i) for i in report.warnings],
            "health": {"score": health.score, "grade": health.grade, "recommendations": health.recommendations},
        }), end="")
    elif not quiet:
        print_validation_report(report, str(loaded.path))
        print_health(health)
    elif not report.valid:
        for issue in report.errors:
            print_error(issue)

    if not report.valid:
        raise typer.Exit(code=1)


@app.command()
def migrate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    write: bool = typer.Option(False, "--write", help="Write the migrated config instead of printing it"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination for --write (default: in place)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Upgrade a legacy (v1) config to the current schema."""
    _setup_logging(verbose)
    try:
        path = config or find_config_file()
        result = migrate_config(read_raw_config(path))
    except DoormanError as e:
        _fail(e)

    print_translation_warnings(result.warnings, err_console)
    if not result.migrated:
        err_console.print(f"{path} is already at schema {result.to_version}; nothing to do.")
        return
    if not write:
        print(to_canonical_json(result.config), end="")
        return

    destination = output or path
    write_config(result.config, destination)
    console.print(
        f"[green]Migrated {path} from schema {result.from_version} to {result.to_version}; "
        f"wrote {destination}[/green]"
    )


@app.command()
def translate(
    to: str = typer.Option(..., "--to", help="Target provider: vercel or cloudflare"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Print the provider-native JSON for every rule and IP entry.

    Warnings about lossy conversions go to stderr.
    """
    _setup_logging(verbose)
    target = _parse_provider(to)
    loaded = _load(config)
    native = RuleTranslator().for_provider(target)

    rules = []
    ips = []
    warnings: list[TranslationWarning] = []
    failed = False
    for rule in loaded.config.rules:
        try:
            result = native.from_unified(rule)
        except TranslationError as e:
            print_error(e)
            failed = True
            continue
        rules.append(result.result.to_dict())
        warnings.extend(result.warnings)
    for ip in loaded.config.ips:
        try:
            result = native.ip_from_unified(ip)
        except TranslationError as e:
            print_error(f"IP {ip.ip}: {e}")
            failed = True
            continue
        ips.append(result.result.to_dict())
        warnings.extend(result.warnings)

    if target == ProviderType.CLOUDFLARE:
        output = {"rules": rules + ips}
    else:
        output = {"rules": rules, "ips": ips}
    print(to_canonical_json(output), end="")
    print_translation_warnings(warnings, err_console)
    if failed:
        raise typer.Exit(code=1)


@app.command()
def diff(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help=_PROVIDER_HELP),
    output_json: bool = typer.Option(False, "--json", help="Output the change set as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all output except errors"),
) -> None:
    """Compare the config with the provider's live rules."""
    _setup_logging(verbose, quiet or output_json)
    loaded = _load(config)
    target = _target_provider(loaded.config, provider)
    _require_valid(loaded.config, target, output_json)

    adapter = _open_provider(target, loaded.config)
    try:
        change_set = SyncOrchestrator(adapter).plan(loaded.config)
    except DoormanError as e:
        _fail(e)
    finally:
        adapter.close()

    if output_json:
        print(to_canonical_json(change_set), end="")
    elif not quiet:
        print_change_set(change_set, target)


@app.command()
def sync(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help=_PROVIDER_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without applying it"),
    output_json: bool = typer.Option(False, "--json", help="Output the sync result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress all output except errors"),
) -> None:
    """Apply the config to the provider.

    Creates run first, then updates, then deletes. Transient API errors are
    retried; anything that still fails is reported and the exit code is 1.
    """
    _setup_logging(verbose, quiet or output_json)
    loaded = _load(config)
    target = _target_provider(loaded.config, provider)
    _require_valid(loaded.config, target, output_json)

    adapter = _open_provider(target, loaded.config)
    try:
        orchestrator = SyncOrchestrator(adapter)
        change_set = orchestrator.plan(loaded.config)
        if not output_json and not quiet:
            print_change_set(change_set, target)
        result = orchestrator.apply(change_set, dry_run=dry_run)
    except DoormanError as e:
        _fail(e)
    finally:
        adapter.close()

    if output_json:
        print(to_canonical_json(result), end="")
    elif not quiet or not result.success:
        print_sync_result(result)
    if not result.success:
        raise typer.Exit(code=1)


def _fetch_remote(target: ProviderType, config: UnifiedConfig) -> UnifiedConfig:
    adapter = _open_provider(target, config)
    try:
        return adapter.fetch_remote_state()
    except DoormanError as e:
        _fail(e)
    finally:
        adapter.close()


@app.command("list")
def list_rules(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help=_PROVIDER_HELP),
    output_json: bool = typer.Option(False, "--json", help="Output the live state as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Show the provider's live rules and IP entries.

    Without a config file, the provider and credentials come from --provider
    and the environment.
    """
    _setup_logging(verbose, output_json)
    if config is None:
        try:
            config = find_config_file()
        except ConfigFileError:
            logger.debug("No config file found; using the environment only")
    declared = _load(config).config if config is not None else UnifiedConfig()
    target = _target_provider(declared, provider)
    remote = _fetch_remote(target, declared)

    if output_json:
        print(to_canonical_json(remote), end="")
    else:
        print_remote_state(remote, target)


@app.command()
def download(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help=_PROVIDER_HELP),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write here instead of the config file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be downloaded without writing"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Replace the config's rules and IP entries with the provider's live state.

    Use this to adopt an existing deployment as code. Provider settings and
    the schema header of the config are kept.
    """
    _setup_logging(verbose)
    loaded = _load(config)
    target = _target_provider(loaded.config, provider)
    remote = _fetch_remote(target, loaded.config)
    print_remote_state(remote, target)

    if dry_run:
        console.print("Dry run, nothing written.")
        return
    destination = output or loaded.path
    if not yes and not typer.confirm(f"Write these rules to {destination}?", default=False):
        console.print("[yellow]Download cancelled.[/yellow]")
        return

    write_config(adopt_remote_state(loaded.config, remote), destination)
    console.print(
        f"[green]Downloaded {len(remote.rules)} rule(s) and {len(remote.ips)} IP entry(ies) "
        f"from {target.value} into {destination}[/green]"
    )


@app.command()
def compat(
    source: str = typer.Option("vercel", "--from", help="Provider the rules come from"),
    target: str = typer.Option("cloudflare", "--to", help="Provider to compare against"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Also check every rule of this config"),
) -> None:
    """Compare feature support between two providers."""
    _setup_logging()
    source_provider = _parse_provider(source)
    target_provider = _parse_provider(target)

    action_rows = [
        (action.value, get_action_support(action, source_provider), get_action_support(action, target_provider))
        for action in ActionType
    ]
    field_rows = [
        (name, get_field_support(name, source_provider), get_field_support(name, target_provider))
        for name in known_fields()
    ]
    print_support_matrix("Actions", action_rows, source_provider, target_provider)
    print_support_matrix("Fields", field_rows, source_provider, target_provider)

    if config is not None:
        loaded = _load(config)
        report = migration_report(loaded.config, target_provider)
        print_migration_report(report)


@app.command()
def version() -> None:
    """Show the Doorman version."""
    console.print(f"Doorman v{__version__}")


if __name__ == "__main__":
    app()
