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

"""Rich terminal output for the CLI.

Everything here only renders; exit codes and control flow stay in cli.py.
"""

from __future__ import annotations

from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from doorman.config.validator import HealthScore, ValidationReport
from doorman.models.changes import ChangeSet, RuleState, SyncResult, TranslationWarning
from doorman.models.rules import ProviderType, UnifiedAction, UnifiedCondition, UnifiedConfig
from doorman.translate.compatibility import FeatureSupport, MigrationReport, SupportLevel

console = Console(soft_wrap=True)
# Diagnostics go to stderr when stdout carries JSON.
err_console = Console(stderr=True, soft_wrap=True)

ICON_PASS = "[bold green][OK][/bold green]"
ICON_WARN = "[bold yellow][WARN][/bold yellow]"
ICON_FAIL = "[bold red][FAIL][/bold red]"
ICON_INFO = "[bold blue][INFO][/bold blue]"

_STATE_STYLE = {
    RuleState.UNMATCHED_NEW: ("+", "green"),
    RuleState.MATCHED_BY_CONTENT_RENAMED: ("~", "cyan"),
    RuleState.MATCHED_WITH_CHANGES: ("~", "yellow"),
    RuleState.MATCHED_UNCHANGED: ("=", "dim"),
    RuleState.TO_DELETE: ("-", "red"),
}

_LEVEL_STYLE = {
    SupportLevel.FULL: "green",
    SupportLevel.PARTIAL: "yellow",
    SupportLevel.NOT_SUPPORTED: "red",
}


def _panel(body: str, title: str, border: str) -> Panel:
    return Panel(body, title=f"[bold {border}]{title}[/bold {border}]", title_align="left",
                 border_style=border, expand=True, safe_box=True)


def print_validation_report(report: ValidationReport, source: Optional[str] = None) -> None:
    """Print errors and warnings from ``validate_config``."""
    where = f" ({source})" if source else ""
    if report.valid and not report.warnings:
        console.print(f"{ICON_PASS}  Configuration is valid{where}")
        return

    lines: list[str] = []
    for issue in report.errors:
        lines.append(f"  {ICON_FAIL}  [bold]{escape(issue.path)}[/bold]: {escape(issue.message)} [dim]({issue.code})[/dim]")
    for issue in report.warnings:
        lines.append(f"  {ICON_WARN}  [bold]{escape(issue.path)}[/bold]: {escape(issue.message)} [dim]({issue.code})[/dim]")

    if report.valid:
        title, border = f"Valid with {len(report.warnings)} warning(s){where}", "yellow"
    else:
        title, border = f"{len(report.errors)} error(s){where}", "red"
    console.print(_panel("\n".join(lines), title, border))


def print_health(health: HealthScore) -> None:
    color = {"excellent": "green", "good": "green", "fair": "yellow"}.get(health.grade, "red")
    console.print(f"Health: [bold {color}]{health.score}/100 ({health.grade})[/bold {color}]")
    for issue in health.issues:
        icon = ICON_WARN if issue.severity == "warning" else ICON_INFO
        console.print(f"  {icon}  {issue.message}")
        if issue.suggestion:
            console.print(f"        [dim]{issue.suggestion}[/dim]")


def print_translation_warnings(warnings: list[TranslationWarning], target: Optional[Console] = None) -> None:
    if not warnings:
        return
    target = target or console
    target.print()
    for warning in warnings:
        icon = ICON_INFO if warning.severity == "info" else ICON_WARN
        target.print(f"  {icon}  {escape(str(warning))}")


def print_change_set(change_set: ChangeSet, provider: Optional[ProviderType] = None) -> None:
    """Print the per-rule plan and a summary of pending operations."""
    target = f" on {provider.value}" if provider else ""
    if not change_set.has_changes:
        console.print(f"{ICON_PASS}  No changes{target}. Remote state matches the config.")
        return

    table = Table(title=f"Planned changes{target}", expand=True, show_lines=False)
    table.add_column("", width=1)
    table.add_column("Rule", style="white", ratio=2, overflow="fold")
    table.add_column("State", ratio=1)
    table.add_column("Remote id", style="dim", ratio=1, overflow="fold")
    for entry in change_set.states:
        mark, style = _STATE_STYLE[entry.state]
        table.add_row(f"[{style}]{mark}[/{style}]", escape(entry.name), f"[{style}]{entry.state.value}[/{style}]", entry.id or "")
    if change_set.states:
        console.print(table)

    for ip in change_set.ips_to_add:
        console.print(f"  [green]+[/green] IP {ip.ip} ({ip.action.value})")
    for ip in change_set.ips_to_update:
        console.print(f"  [yellow]~[/yellow] IP {ip.ip} ({ip.action.value})")
    for ip in change_set.ips_to_delete:
        console.print(f"  [red]-[/red] IP {ip.ip} ({ip.action.value})")

    console.print(
        f"\nRules: [green]{len(change_set.rules_to_add)} to add[/green], "
        f"[yellow]{len(change_set.rules_to_update)} to update[/yellow], "
        f"[red]{len(change_set.rules_to_delete)} to delete[/red]. "
        f"IPs: [green]{len(change_set.ips_to_add)} to add[/green], "
        f"[yellow]{len(change_set.ips_to_update)} to update[/yellow], "
        f"[red]{len(change_set.ips_to_delete)} to delete[/red]."
    )
    if change_set.declared_version is not None and change_set.declared_version != change_set.version:
        console.print(
            f"[dim]Config version {change_set.declared_version}, remote version {change_set.version}.[/dim]"
        )


def _condition_text(condition: UnifiedCondition) -> str:
    field = f"{condition.field}[{condition.key}]" if condition.key else condition.field
    value = "" if condition.value is None else f" {condition.value}"
    text = f"{field} {condition.operator.value}{value}"
    return f"not ({text})" if condition.negated else text


def _action_text(action: UnifiedAction) -> str:
    parts = [action.type.value]
    if action.rate_limit is not None:
        parts.append(f"{action.rate_limit.requests}/{action.rate_limit.window}")
    if action.redirect is not None:
        parts.append(f"-> {action.redirect.location}")
    if action.duration:
        parts.append(f"for {action.duration}")
    return " ".join(parts)


def print_remote_state(config: UnifiedConfig, provider: ProviderType) -> None:
    """Print the rules and IP entries fetched from a provider."""
    version = f" (version {config.remote_version})" if config.remote_version is not None else ""
    if not config.rules and not config.ips:
        console.print(f"{ICON_INFO}  No rules or IP entries on {provider.value}{version}.")
        return

    if config.rules:
        table = Table(title=f"Rules on {provider.value}{version}", expand=True)
        table.add_column("", width=3)
        table.add_column("Id", style="dim", ratio=1, overflow="fold")
        table.add_column("Name", ratio=2, overflow="fold")
        table.add_column("Conditions", ratio=3, overflow="fold")
        table.add_column("Action", style="cyan", ratio=1, overflow="fold")
        for rule in config.rules:
            joiner = f"\n{rule.condition_logic.value} "
            if rule.conditions:
                conditions = escape(joiner.join(_condition_text(c) for c in rule.conditions))
            else:
                conditions = "[dim](not parsed)[/dim]"
            table.add_row(
                "[green]on[/green]" if rule.enabled else "[red]off[/red]",
                rule.id or "",
                escape(rule.name),
                conditions,
                escape(_action_text(rule.action)),
            )
        console.print(table)

    for ip in config.ips:
        note = f" [dim]{escape(ip.hostname or ip.notes or '')}[/dim]" if ip.hostname or ip.notes else ""
        console.print(f"  IP {ip.ip} ({ip.action.value}){note}")
    console.print(f"\n{len(config.rules)} rule(s), {len(config.ips)} IP entry(ies)")


def print_sync_result(result: SyncResult) -> None:
    counts = (
        f"rules +{result.rules_added} ~{result.rules_updated} -{result.rules_deleted}, "
        f"IPs +{result.ips_added} ~{result.ips_updated} -{result.ips_deleted}"
    )
    version = f" (remote version {result.version})" if result.version is not None else ""
    if result.dry_run:
        console.print(f"{ICON_INFO}  Dry run, nothing applied. Would apply: {counts}")
        return
    if result.success:
        console.print(f"{ICON_PASS}  Sync complete: {counts}{version}")
    else:
        lines = [f"  Applied: {counts}{version}", ""]
        for failure in result.failures:
            status = f" [dim]HTTP {failure.status_code}[/dim]" if failure.status_code else ""
            lines.append(
                f"  {ICON_FAIL}  {failure.kind.value} {failure.target.value} [bold]{failure.label}[/bold]"
                f" after {failure.attempts} attempt(s){status}: {escape(failure.message)}"
            )
        console.print(_panel("\n".join(lines), f"Sync partially failed ({len(result.failures)})", "red"))
    for warning in result.warnings:
        console.print(f"  {ICON_WARN}  {escape(warning)}")


def print_support_matrix(
    title: str,
    rows: list[tuple[str, FeatureSupport, FeatureSupport]],
    source: ProviderType,
    target: ProviderType,
) -> None:
    table = Table(title=title, expand=True)
    table.add_column("Feature", style="cyan", ratio=1, overflow="fold")
    table.add_column(source.value, ratio=1, overflow="fold")
    table.add_column(target.value, ratio=1, overflow="fold")
    for name, left, right in rows:
        table.add_row(name, _support_cell(left), _support_cell(right))
    console.print(table)


def _support_cell(support: FeatureSupport) -> str:
    style = _LEVEL_STYLE[support.level]
    note = f" [dim]{support.note}[/dim]" if support.note else ""
    return f"[{style}]{support.level.value}[/{style}]{note}"


def print_migration_report(report: MigrationReport) -> None:
    source = report.source.value if report.source else "config"
    table = Table(title=f"{source} -> {report.target.value}", expand=True)
    table.add_column("Entry", ratio=1, overflow="fold")
    table.add_column("Support", ratio=1)
    table.add_column("Notes", style="dim", ratio=3, overflow="fold")
    for entity in report.entities:
        style = _LEVEL_STYLE[entity.level]
        table.add_row(escape(entity.name), f"[{style}]{entity.level.value}[/{style}]", escape("\n".join(entity.notes)))
    console.print(table)
    console.print(
        f"{report.count(SupportLevel.FULL)} full, {report.count(SupportLevel.PARTIAL)} partial, "
        f"{report.count(SupportLevel.NOT_SUPPORTED)} unsupported"
    )


def print_error(message: Any) -> None:
    err_console.print(f"[red]Error: {escape(str(message))}[/red]", highlight=False)
