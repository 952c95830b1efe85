# qbsync Recovery and Tidy
# Repair procedures run around a sync: staging recovery, pruning, orphan cleanup

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from qbsync.errors import TransportError
from qbsync.output.console import Console
from qbsync.remote.base import RemoteService
from qbsync.remote.scope import Scope
from qbsync.sync.actions import ActionType, ItemResult, RunResult
from qbsync.sync.manifest import ManifestEntry, ManifestStore


class OrphanKind(str, Enum):
    """Why a question is an orphan."""

    MISSING_FILE = "local file missing"
    UNTRACKED = "not in manifest"


@dataclass(frozen=True)
class OrphanCandidate:
    """A question that exists on only one side."""

    entity_id: str
    kind: OrphanKind
    file_path: Optional[str] = None
    name: str = ""
    category_path: str = ""

    @property
    def tracked(self) -> bool:
        """Candidate has a manifest entry."""
        return self.kind == OrphanKind.MISSING_FILE

    def describe(self) -> str:
        if self.tracked:
            return f"Question {self.entity_id} ({self.file_path}): {self.kind.value}"
        label = f"{self.category_path}/{self.name}" if self.category_path else self.name
        return f"Question {self.entity_id} ({label}): {self.kind.value}"


def recover(store: ManifestStore, console: Console) -> int:
    """
    Merge a staging log left over from an interrupted run.

    Safe to call when there is nothing to recover.

    Args:
        store: Manifest store.
        console: Console for diagnostics.

    Returns:
        Number of records merged.
    """
    if not store.staging.exists():
        return 0

    console.print_warning(f"Found staging log {store.staging.path.name} from an interrupted run. Merging it.")
    count = store.merge_staging()
    console.print_info(f"Recovered {count} staged record(s) into {store.path.name}.")
    return count


def tidy(store: ManifestStore, remote: RemoteService, scope: Scope, console: Console) -> list[ManifestEntry]:
    """
    Drop manifest entries whose question no longer exists remotely.

    The whole context is listed, not just the configured category, and
    entries missing from that listing are looked up again by id in case
    they moved elsewhere.

    Args:
        store: Manifest store.
        remote: Remote service.
        scope: Scope of the run (category filter is cleared).
        console: Console for diagnostics.

    Returns:
        Removed entries. Empty if the remote could not be listed.
    """
    manifest = store.manifest
    whole_context = scope.whole_context()

    try:
        found = {entity.entity_id for entity in remote.list_entities(whole_context)}
        missing = [entry.entity_id for entry in manifest.questions if entry.entity_id not in found]
        if missing:
            found |= {entity.entity_id for entity in remote.list_entities(whole_context, entity_ids=missing)}
    except TransportError as e:
        console.print_error(f"Could not list questions, manifest left untouched. {e.describe()}")
        return []

    gone = {entity_id for entity_id in missing if entity_id not in found}
    if not gone:
        return []

    removed = manifest.remove_many(gone)
    for entry in removed:
        console.print_info(f"Question {entry.entity_id} ({entry.file_path}) no longer exists, removed from manifest.")
    store.save()
    return removed


def find_orphans(
    store: ManifestStore,
    remote: RemoteService,
    scope: Scope,
    console: Console,
    *,
    subdirectory: Optional[str] = None,
) -> list[OrphanCandidate]:
    """
    Questions that exist on only one side.

    Tracked entries in scope whose file is gone come first, then remote
    questions in scope with no manifest entry. A remote listing failure is
    reported and only local candidates are returned.
    """
    manifest = store.manifest
    candidates = [
        OrphanCandidate(entity_id=entry.entity_id, kind=OrphanKind.MISSING_FILE, file_path=entry.file_path)
        for entry in manifest.entries_in_scope(subdirectory)
        if not (store.root / entry.file_path).exists()
    ]

    try:
        entities = remote.list_entities(scope)
    except TransportError as e:
        console.print_error(f"Could not list questions in Moodle. {e.describe()}")
        return candidates

    candidates.extend(
        OrphanCandidate(
            entity_id=entity.entity_id,
            kind=OrphanKind.UNTRACKED,
            name=entity.name,
            category_path=entity.category_path,
        )
        for entity in entities
        if manifest.get(entity.entity_id) is None
    )
    return candidates


def delete_orphans(
    store: ManifestStore,
    remote: RemoteService,
    scope: Scope,
    confirm_fn: Callable[[OrphanCandidate], bool],
    console: Console,
    *,
    subdirectory: Optional[str] = None,
) -> RunResult:
    """
    Delete questions that exist on only one side, after confirmation.

    Args:
        store: Manifest store.
        remote: Remote service.
        scope: Scope to look for untracked remote questions in.
        confirm_fn: Called per candidate; only confirmed ones are deleted.
        console: Console for diagnostics.
        subdirectory: Only tracked entries below this directory are considered.

    Returns:
        RunResult with one item per candidate.
    """
    result = RunResult("delete")
    manifest = store.manifest
    changed = False

    for candidate in find_orphans(store, remote, scope, console, subdirectory=subdirectory):
        if not confirm_fn(candidate):
            result.add(
                ItemResult(candidate.entity_id, ActionType.SKIP, file_path=candidate.file_path, reason="Not confirmed")
            )
            continue

        try:
            deleted = remote.delete(candidate.entity_id)
        except TransportError as e:
            console.print_error(f"Failed to delete question {candidate.entity_id}. {e.describe()}")
            result.add(ItemResult(candidate.entity_id, ActionType.DELETE, success=False, error=e.message))
            continue

        if not deleted:
            console.print_error(f"Moodle did not delete question {candidate.entity_id}.")
            result.add(ItemResult(candidate.entity_id, ActionType.DELETE, success=False, error="Delete refused"))
            continue

        if candidate.tracked and manifest.remove(candidate.entity_id):
            changed = True
            result.removed.append(candidate.entity_id)
        console.print_success(f"Deleted question {candidate.entity_id}.")
        result.add(ItemResult(candidate.entity_id, ActionType.DELETE, file_path=candidate.file_path))

    if changed:
        store.save()
    return result
