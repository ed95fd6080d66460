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

"""Apply a change set to a provider.

Each sync re-fetches remote state and recomputes the diff; nothing is cached
between runs. Operations run in phases (creates, updates, deletes) so a rule
that was renamed is only removed once its replacement exists. Within a phase,
operations run concurrently in bounded batches and each one is retried on
transient API errors. A failure that survives its retries is recorded and
the rest of the batch carries on.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from doorman.errors import DoormanError, RemoteAPIError
from doorman.models.changes import (
    Change,
    ChangeKind,
    ChangeSet,
    ChangeTarget,
    OperationFailure,
    SyncResult,
)
from doorman.models.rules import UnifiedConfig
from doorman.providers.base import FirewallProvider
from doorman.sync.diff_engine import diff_configs, plan_operations

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

_COUNTERS = {
    (ChangeTarget.RULE, ChangeKind.ADD): "rules_added",
    (ChangeTarget.RULE, ChangeKind.UPDATE): "rules_updated",
    (ChangeTarget.RULE, ChangeKind.DELETE): "rules_deleted",
    (ChangeTarget.IP, ChangeKind.ADD): "ips_added",
    (ChangeTarget.IP, ChangeKind.UPDATE): "ips_updated",
    (ChangeTarget.IP, ChangeKind.DELETE): "ips_deleted",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2**attempt`` before retry ``attempt + 1``."""

    max_attempts: int = 3
    base_delay: float = 1.0

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """``attempt`` is the number of attempts made so far."""
        return isinstance(error, RemoteAPIError) and error.transient and attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


@dataclass
class _Outcome:
    change: Change
    attempts: int
    error: Optional[Exception] = None


class SyncOrchestrator:
    """Plans and applies changes against one provider."""

    def __init__(
        self,
        provider: FirewallProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.batch_size = batch_size
        self.retry = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay)
        self._sleep = sleep

    def plan(self, declared: UnifiedConfig) -> ChangeSet:
        """Fetch live state and diff the declared config against it."""
        remote = self.provider.fetch_remote_state()
        declared_fp, remote_fp = self.provider.fingerprints()
        return diff_configs(
            declared,
            remote,
            declared_fingerprint=declared_fp,
            remote_fingerprint=remote_fp,
            ip_compare_fields=self.provider.supported_features().ip_compare_fields,
        )

    def sync(self, declared: UnifiedConfig, dry_run: bool = False) -> SyncResult:
        return self.apply(self.plan(declared), dry_run=dry_run)

    def apply(self, change_set: ChangeSet, dry_run: bool = False) -> SyncResult:
        phases = plan_operations(change_set)
        counts = dict.fromkeys(_COUNTERS.values(), 0)
        failures: list[OperationFailure] = []

        if dry_run:
            for phase in phases:
                for change in phase:
                    counts[_COUNTERS[(change.target, change.kind)]] += 1
            logger.info("Dry run: %d change(s) planned, nothing applied", change_set.total)
            return SyncResult(success=True, version=change_set.version, dry_run=True, **counts)

        for number, phase in enumerate(phases, start=1):
            logger.info("Phase %d/%d: %d %s operation(s)", number, len(phases), len(phase), phase[0].kind.value)
            for outcome in self._run_phase(phase):
                change = outcome.change
                if outcome.error is None:
                    counts[_COUNTERS[(change.target, change.kind)]] += 1
                    continue
                failures.append(OperationFailure(
                    kind=change.kind,
                    target=change.target,
                    label=change.label,
                    message=str(outcome.error),
                    attempts=outcome.attempts,
                    status_code=getattr(outcome.error, "status_code", None),
                ))

        warnings = [str(w) for w in self.provider.warnings]
        version = change_set.version
        if phases and len(failures) < change_set.total:
            version = self._current_version(version)
        if failures:
            logger.error("Sync finished with %d failed operation(s)", len(failures))
        return SyncResult(success=not failures, version=version, failures=failures, warnings=warnings, **counts)

    def _run_phase(self, phase: list[Change]) -> list[_Outcome]:
        outcomes: list[_Outcome] = []
        with ThreadPoolExecutor(max_workers=min(self.batch_size, len(phase))) as pool:
            for start in range(0, len(phase), self.batch_size):
                batch = phase[start:start + self.batch_size]
                outcomes.extend(pool.map(self._apply_one, batch))
        return outcomes

    def _apply_one(self, change: Change) -> _Outcome:
        attempt = 0
        while True:
            attempt += 1
            try:
                self.provider.apply_change(change)
                return _Outcome(change, attempt)
            except DoormanError as e:
                if not self.retry.should_retry(attempt, e):
                    logger.error("%s %s %r failed after %d attempt(s): %s",
                                 change.kind.value, change.target.value, change.label, attempt, e)
                    return _Outcome(change, attempt, e)
                delay = self.retry.delay(attempt - 1)
                logger.warning("Retry #%d of %s %r in %.2fs due to: %s",
                               attempt, change.kind.value, change.label, delay, e)
                self._sleep(delay)

    def _current_version(self, fallback: Optional[int]) -> Optional[int]:
        try:
            return self.provider.fetch_remote_state().remote_version
        except RemoteAPIError as e:
            logger.warning("Could not read the remote version after sync: %s", e)
            return fallback
