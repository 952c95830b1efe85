# qbsync Sync Actions
# Classification of remote entities and per-item results

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from qbsync.remote.base import RemoteEntity
from qbsync.sync.manifest import ManifestEntry


class ActionType(str, Enum):
    """Types of sync actions."""

    # Export into a new file
    CREATE = "create"

    # Overwrite the tracked file
    UPDATE = "update"

    # Nothing to do
    SKIP = "skip"

    # Removed from the remote (orphan cleanup only)
    DELETE = "delete"


@dataclass
class SyncAction:
    """
    A synchronization action to perform.

    Pairs a remote entity with the manifest entry tracking it, if any.
    """

    action_type: ActionType
    entity: RemoteEntity
    entry: Optional[ManifestEntry] = None
    reason: str = ""

    @property
    def entity_id(self) -> str:
        return self.entity.entity_id

    @property
    def needs_action(self) -> bool:
        """Check if this action requires execution."""
        return self.action_type != ActionType.SKIP


def apply_entity(
    existing: Optional[ManifestEntry],
    remote: RemoteEntity,
    refresh_existing: bool,
) -> SyncAction:
    """
    Determine what to do with a remote entity.

    Args:
        existing: Manifest entry tracking the entity, if any.
        remote: Entity as listed by the server.
        refresh_existing: Whether tracked entities should be re-exported.

    Returns:
        SyncAction describing what to do.
    """
    if existing is None:
        return SyncAction(ActionType.CREATE, remote, reason="Not in manifest")
    if refresh_existing:
        return SyncAction(ActionType.UPDATE, remote, existing, reason="Tracked, refreshing from remote")
    return SyncAction(ActionType.SKIP, remote, existing, reason="Already tracked")


@dataclass
class ItemResult:
    """Outcome for one question or category."""

    entity_id: Optional[str]
    action_type: ActionType
    success: bool = True
    file_path: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.success and self.action_type == ActionType.SKIP


@dataclass
class RunResult:
    """Result of one flow or a complete run."""

    operation: str
    items: list[ItemResult] = field(default_factory=list)
    categories_imported: int = 0
    removed: list[str] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    def add(self, item: ItemResult) -> ItemResult:
        self.items.append(item)
        return item

    def extend(self, other: "RunResult") -> "RunResult":
        """Fold another result into this one."""
        self.items.extend(other.items)
        self.categories_imported += other.categories_imported
        self.removed.extend(other.removed)
        if other.aborted:
            self.aborted = True
            self.error = other.error
        return self

    def _count(self, action_type: ActionType) -> int:
        return sum(1 for item in self.items if item.success and item.action_type == action_type)

    @property
    def created(self) -> int:
        return self._count(ActionType.CREATE)

    @property
    def updated(self) -> int:
        return self._count(ActionType.UPDATE)

    @property
    def skipped(self) -> int:
        return self._count(ActionType.SKIP)

    @property
    def deleted(self) -> int:
        return self._count(ActionType.DELETE)

    @property
    def errors(self) -> int:
        return sum(1 for item in self.items if not item.success)

    @property
    def failed_items(self) -> list[ItemResult]:
        return [item for item in self.items if not item.success]

    @property
    def success(self) -> bool:
        return not self.aborted and self.errors == 0
