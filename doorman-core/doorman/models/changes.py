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

"""Models for translation results, change sets, and sync results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import Field

from doorman.models.rules import DoormanModel, UnifiedIPRule, UnifiedRule

T = TypeVar("T")


@dataclass(frozen=True)
class TranslationWarning:
    """A non-fatal notice that a conversion was lossy or best-effort."""

    message: str
    rule: Optional[str] = None
    field: Optional[str] = None
    severity: str = "warning"  # "warning" or "info"

    def __str__(self) -> str:
        where = f"Rule {self.rule!r}: " if self.rule else ""
        return f"{where}{self.message}"


@dataclass
class TranslationResult(Generic[T]):
    """A translated object plus the warnings raised producing it."""

    result: T
    warnings: list[TranslationWarning] = field(default_factory=list)


class RuleState(str, Enum):
    """Where a rule ended up after diffing."""

    UNMATCHED_NEW = "unmatched-new"
    MATCHED_BY_CONTENT_RENAMED = "matched-by-content-renamed"
    MATCHED_WITH_CHANGES = "matched-with-changes"
    MATCHED_UNCHANGED = "matched-unchanged"
    TO_DELETE = "to-delete"


class ChangeKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class ChangeTarget(str, Enum):
    RULE = "rule"
    IP = "ip"


class Change(DoormanModel):
    """One create/update/delete operation against a provider."""

    kind: ChangeKind
    target: ChangeTarget
    rule: Optional[UnifiedRule] = None
    ip: Optional[UnifiedIPRule] = None

    @property
    def label(self) -> str:
        if self.rule is not None:
            return self.rule.name
        if self.ip is not None:
            return self.ip.ip
        return "?"

    @property
    def remote_id(self) -> Optional[str]:
        item = self.rule if self.rule is not None else self.ip
        return item.id if item is not None else None


class RuleStateEntry(DoormanModel):
    name: str
    state: RuleState
    id: Optional[str] = None


class ChangeSet(DoormanModel):
    """The add/update/delete partition between declared and remote state.

    Updates carry the declared content under the remote id. Deletes carry
    the remote object.
    """

    rules_to_add: list[UnifiedRule] = Field(default_factory=list, alias="rulesToAdd")
    rules_to_update: list[UnifiedRule] = Field(default_factory=list, alias="rulesToUpdate")
    rules_to_delete: list[UnifiedRule] = Field(default_factory=list, alias="rulesToDelete")
    ips_to_add: list[UnifiedIPRule] = Field(default_factory=list, alias="ipsToAdd")
    ips_to_update: list[UnifiedIPRule] = Field(default_factory=list, alias="ipsToUpdate")
    ips_to_delete: list[UnifiedIPRule] = Field(default_factory=list, alias="ipsToDelete")
    version: Optional[int] = None
    declared_version: Optional[int] = Field(default=None, alias="declaredVersion")
    has_changes: bool = Field(default=False, alias="hasChanges")
    states: list[RuleStateEntry] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.rules_to_add) + len(self.rules_to_update) + len(self.rules_to_delete)
            + len(self.ips_to_add) + len(self.ips_to_update) + len(self.ips_to_delete)
        )


class ChangeOutcome(DoormanModel):
    """What a provider reports after applying one change."""

    id: Optional[str] = None
    message: Optional[str] = None


class OperationFailure(DoormanModel):
    """A change that still failed after its retries were exhausted."""

    kind: ChangeKind
    target: ChangeTarget
    label: str
    message: str
    attempts: int
    status_code: Optional[int] = Field(default=None, alias="statusCode")


class SyncResult(DoormanModel):
    """Counts of applied operations, returned to the CLI for reporting."""

    success: bool
    rules_added: int = Field(default=0, alias="rulesAdded")
    rules_updated: int = Field(default=0, alias="rulesUpdated")
    rules_deleted: int = Field(default=0, alias="rulesDeleted")
    ips_added: int = Field(default=0, alias="ipsAdded")
    ips_updated: int = Field(default=0, alias="ipsUpdated")
    ips_deleted: int = Field(default=0, alias="ipsDeleted")
    version: Optional[int] = None
    dry_run: bool = Field(default=False, alias="dryRun")
    failures: list[OperationFailure] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
