# qbsync Sync Engine
# Manifest-driven reconciliation between Moodle and the question repository

import re
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from qbsync.errors import (
    CategoryImportError,
    ConfigError,
    DocumentError,
    FilesystemError,
    TransportError,
    VersionConflictError,
)
from qbsync.output.console import Console
from qbsync.remote.base import RemoteEntity, RemoteService, VersionTriple, same_version
from qbsync.remote.scope import Scope
from qbsync.sync.actions import ActionType, ItemResult, RunResult, SyncAction, apply_entity
from qbsync.sync.category import (
    CATEGORY_FILE,
    CategoryResolver,
    category_directory,
    in_scope,
    is_ignored,
    read_category_marker,
    sanitize_segment,
)
from qbsync.sync.document import EntityDocument, normalize_document, parse_entity_document
from qbsync.sync.manifest import Manifest, ManifestContext, ManifestEntry, ManifestStore, StagedRecord
from qbsync.sync.tidy import OrphanCandidate, delete_orphans, find_orphans, recover, tidy
from qbsync.utils.paths import walk_tree

MAX_NAME_LENGTH = 230
QUESTION_SUFFIX = ".xml"

CommitHashFn = Callable[[Path], Optional[str]]


def unique_file_name(
    directory: Path,
    name: str,
    suffix: str = QUESTION_SUFFIX,
    taken: Collection[Path] = (),
) -> Path:
    """
    Collision-free path for a question file.

    The name is sanitized and cut to 230 characters. If the file exists or
    is in ``taken``, ``_2``, ``_3``, ... is appended until a free name is found.

    Args:
        directory: Category directory.
        name: Question name.
        suffix: File extension.
        taken: Paths already claimed by tracked questions, on disk or not.

    Returns:
        Path that does not exist yet and is not taken.
    """
    base = sanitize_segment(name)[:MAX_NAME_LENGTH] or "question"
    candidate = directory / f"{base}{suffix}"
    counter = 2
    while candidate.exists() or candidate in taken:
        candidate = directory / f"{base}_{counter}{suffix}"
        counter += 1
    return candidate


@dataclass
class RepoStatus:
    """Local view of a repository against its manifest."""

    manifest_path: Path
    tracked: int = 0
    in_scope: int = 0
    missing_files: list[str] = field(default_factory=list)
    untracked_files: list[str] = field(default_factory=list)
    pending_staged: int = 0


class SyncEngine:
    """
    Reconciliation engine for one repository and one Moodle context.

    Flows:
        export_new: write questions the manifest does not know yet.
        refresh_existing: overwrite tracked files with the remote version.
        import_categories / import_questions: push the repository to Moodle.

    Results of the export and import flows go to the staging log first and
    are merged into the manifest at the end of a run.
    """

    def __init__(
        self,
        remote: RemoteService,
        store: ManifestStore,
        scope: Scope,
        *,
        subdirectory: Optional[str] = None,
        ignore_category: Optional[str] = None,
        moodle_url: Optional[str] = None,
        commit_hash_of: Optional[CommitHashFn] = None,
        console: Optional[Console] = None,
    ):
        """
        Initialize sync engine.

        Args:
            remote: Remote service questions are read from and pushed to.
            store: Manifest store for the repository.
            scope: Context and optional category the run targets.
            subdirectory: Directory (relative to the repository root) the run is
                limited to. Defaults to the directory of the scope's category.
            ignore_category: Regex; categories with a matching name are skipped.
            moodle_url: Base URL recorded in a new manifest.
            commit_hash_of: Returns the last commit of a file. Enables git tracking.
            console: Console for diagnostics (silent if not given).
        """
        self.remote = remote
        self.store = store
        self.scope = scope
        self.subcategory = scope.category_name
        self.subdirectory = subdirectory if subdirectory is not None else category_directory(scope.category_name)
        self.ignore_category = ignore_category
        self.ignore_pattern = re.compile(ignore_category) if ignore_category else None
        self.moodle_url = moodle_url
        self.commit_hash_of = commit_hash_of
        self.console = console or Console(quiet=True)
        self.resolver = CategoryResolver(store.root, self.subcategory)
        self._claimed: set[Path] = set()

    @property
    def root(self) -> Path:
        return self.store.root

    @property
    def manifest(self) -> Manifest:
        return self.store.manifest

    @property
    def use_git(self) -> bool:
        return self.commit_hash_of is not None

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _context_fields(self) -> dict:
        return self.scope.context_fields()

    # ------------------------------------------------------------------
    # Export flows
    # ------------------------------------------------------------------

    def _drive(self, actions: list[SyncAction], result: RunResult) -> RunResult:
        """Execute classified actions, one item at a time."""
        for action in actions:
            if not action.needs_action:
                item = ItemResult(action.entity_id, ActionType.SKIP, reason=action.reason)
            elif action.action_type == ActionType.CREATE:
                item = self._create(action)
            else:
                item = self._update(action)
            result.add(item)
        return result

    def export_new(self, entities: Optional[list[RemoteEntity]] = None) -> RunResult:
        """
        Write every listed question that the manifest does not track yet.

        Results are staged, not merged.

        Args:
            entities: Remote listing. Fetched for the engine's scope if omitted.

        Returns:
            RunResult for the exported questions.
        """
        result = RunResult("export")
        if entities is None:
            try:
                entities = self.remote.list_entities(self.scope)
            except TransportError as e:
                self.console.print_error(f"Could not list questions in Moodle. {e.describe()}")
                result.aborted = True
                result.error = e.message
                return result

        self._claimed = {self.root / entry.file_path for entry in self.manifest.questions}
        actions = [
            apply_entity(self.manifest.get(entity.entity_id), entity, refresh_existing=False) for entity in entities
        ]
        return self._drive(actions, result)

    def refresh_existing(self) -> RunResult:
        """
        Re-export every tracked question in scope over its file.

        The manifest is saved afterwards on a best-effort basis.

        Returns:
            RunResult for the refreshed questions.
        """
        result = RunResult("export")
        actions = [
            apply_entity(entry, RemoteEntity(entity_id=entry.entity_id), refresh_existing=True)
            for entry in self.manifest.entries_in_scope(self.subdirectory)
        ]
        self._drive(actions, result)

        try:
            self.store.save()
        except FilesystemError as e:
            self.console.print_warning(f"Manifest not saved, it will be reconciled on the next run. {e.message}")
        return result

    def _create(self, action: SyncAction) -> ItemResult:
        entity = action.entity
        try:
            fetched = self.remote.fetch(entity.entity_id, include_category=True)
            document = parse_entity_document(fetched.content)
        except TransportError as e:
            self.console.print_error(f"Failed to export question {entity.entity_id}. {e.describe()}")
            return ItemResult(entity.entity_id, ActionType.CREATE, success=False, error=e.message)
        except DocumentError as e:
            self.console.print_error(f"Question {entity.entity_id} could not be read. {e.message}")
            return ItemResult(entity.entity_id, ActionType.CREATE, success=False, error=e.message)

        try:
            directory = self._materialize(document, entity)
            path = unique_file_name(directory, document.name or entity.name, taken=self._claimed)
            _write(path, document.payload)
            self._claimed.add(path)
        except FilesystemError as e:
            self.console.print_error(f"Question {entity.entity_id} not written. {e.message}")
            return ItemResult(entity.entity_id, ActionType.CREATE, success=False, error=e.message)

        version = fetched.version if fetched.version is not None else entity.version
        file_path = self._relative(path)
        self.store.stage(
            StagedRecord(
                entity_id=entity.entity_id,
                file_path=file_path,
                imported_version=version,
                exported_version=version,
                format="xml",
                context_fields=self._context_fields(),
            )
        )
        self.console.print_debug(f"Exported question {entity.entity_id} to {file_path}")
        return ItemResult(entity.entity_id, ActionType.CREATE, file_path=file_path)

    def _materialize(self, document: EntityDocument, entity: RemoteEntity) -> Path:
        """Create the document's categories; returns the deepest one's directory."""
        if document.category_chain:
            directory = self.root
            for declaration in document.category_chain:
                directory = self.resolver.materialize(declaration.path, declaration.content)
            return directory
        if entity.category_path:
            return self.resolver.materialize(entity.category_path)
        return self.root

    def _update(self, action: SyncAction) -> ItemResult:
        entry = action.entry
        try:
            fetched = self.remote.fetch(entry.entity_id, include_category=False)
            content = normalize_document(fetched.content)
        except TransportError as e:
            self.console.print_error(f"Failed to export question {entry.entity_id}. {e.describe()}")
            return ItemResult(
                entry.entity_id, ActionType.UPDATE, success=False, file_path=entry.file_path, error=e.message
            )
        except DocumentError as e:
            self.console.print_error(f"Question {entry.entity_id} could not be read. {e.message}")
            return ItemResult(
                entry.entity_id, ActionType.UPDATE, success=False, file_path=entry.file_path, error=e.message
            )

        try:
            _write(self.root / entry.file_path, content)
        except FilesystemError as e:
            self.console.print_error(f"Question {entry.entity_id} not written. {e.message}")
            return ItemResult(
                entry.entity_id, ActionType.UPDATE, success=False, file_path=entry.file_path, error=e.message
            )

        entry.exported_version = fetched.version
        self.console.print_debug(f"Refreshed {entry.file_path}")
        return ItemResult(entry.entity_id, ActionType.UPDATE, file_path=entry.file_path)

    # ------------------------------------------------------------------
    # Import flow
    # ------------------------------------------------------------------

    def check_versions(self) -> None:
        """
        Refuse to import over questions changed in Moodle since the last sync.

        A tracked question is in conflict when its remote version is neither
        the version last imported nor the version last exported.

        Raises:
            VersionConflictError: If any tracked question in scope conflicts.
        """
        conflicts: list[tuple[ManifestEntry, RemoteEntity]] = []
        for entity in self.remote.list_entities(self.scope):
            entry = self.manifest.get(entity.entity_id)
            if entry is None or entity.version is None:
                continue
            if not in_scope(entry.directory, self.subdirectory):
                continue
            if same_version(entity.version, entry.imported_version) or same_version(
                entity.version, entry.exported_version
            ):
                continue
            conflicts.append((entry, entity))

        if conflicts:
            for entry, entity in conflicts:
                self.console.print_error(
                    f"{entry.file_path}: Moodle has version {entity.version}, "
                    f"last exported version is {entry.exported_version}."
                )
            raise VersionConflictError(
                f"{len(conflicts)} question(s) changed in Moodle since the last export. "
                "Export them before importing.",
                [entry.entity_id for entry, _ in conflicts],
            )

    def import_categories(self) -> RunResult:
        """
        Create every category of the repository in Moodle, parents first.

        Raises:
            CategoryImportError: If Moodle rejects a category. Questions
                depend on their category, so the run cannot go on.
        """
        result = RunResult("import")
        for directory, _ in walk_tree(self.root):
            marker = directory / CATEGORY_FILE
            if not marker.is_file():
                continue
            try:
                category_path = read_category_marker(directory)
            except FilesystemError as e:
                self.console.print_error(e.message)
                continue
            if is_ignored(category_path, self.ignore_pattern):
                continue

            try:
                content_ref = self.remote.upload(marker)
                self.remote.import_category(content_ref, self.scope.whole_context())
            except TransportError as e:
                raise CategoryImportError(f"Failed to import category {category_path}. {e.describe()}") from e
            result.categories_imported += 1
            self.console.print_debug(f"Imported category {category_path}")
        return result

    def refresh_commits(self) -> None:
        """Record each tracked file's current commit in memory."""
        if self.commit_hash_of is None:
            return
        for entry in self.manifest.questions:
            path = self.root / entry.file_path
            if path.exists():
                entry.scm_commit_current = self.commit_hash_of(path)

    def import_questions(self) -> RunResult:
        """
        Push question files below the import directory to Moodle.

        Files are skipped when their directory has no readable category,
        when the category is ignored, or when the file has not changed
        since it was last synced.

        Returns:
            RunResult for the pushed questions.
        """
        result = RunResult("import")
        self.refresh_commits()

        import_dir = self.root / self.subdirectory if self.subdirectory else self.root
        categories: dict[Path, Optional[str]] = {}
        for directory, files in walk_tree(import_dir, suffix=QUESTION_SUFFIX):
            for path in files:
                if path.name == CATEGORY_FILE:
                    continue
                result.add(self._push(directory, path, categories))
        return result

    def _category_for(self, directory: Path, cache: dict[Path, Optional[str]]) -> Optional[str]:
        if directory not in cache:
            try:
                cache[directory] = read_category_marker(directory)
            except FilesystemError as e:
                self.console.print_error(f"{e.message} Questions in {directory} are not imported.")
                cache[directory] = None
        return cache[directory]

    def _push(self, directory: Path, path: Path, categories: dict[Path, Optional[str]]) -> ItemResult:
        file_path = self._relative(path)
        entry = self.manifest.find_by_path(file_path)
        entity_id = entry.entity_id if entry else None

        category_path = self._category_for(directory, categories)
        if category_path is None:
            return ItemResult(entity_id, ActionType.SKIP, success=False, file_path=file_path, error="No category")
        if is_ignored(category_path, self.ignore_pattern):
            return ItemResult(entity_id, ActionType.SKIP, file_path=file_path, reason="Category ignored")
        if entry is not None and entry.is_unchanged:
            return ItemResult(entity_id, ActionType.SKIP, file_path=file_path, reason="Unchanged since last sync")

        if entry is not None:
            versions = VersionTriple(entry.entity_id, entry.imported_version, entry.exported_version)
        else:
            versions = VersionTriple()

        try:
            content_ref = self.remote.upload(path)
            pushed = self.remote.push(entity_id, content_ref, versions, self.scope.whole_context(), category_path)
        except TransportError as e:
            self.console.print_error(f"Failed to import {file_path}. {e.describe()}")
            action_type = ActionType.UPDATE if entry else ActionType.CREATE
            return ItemResult(entity_id, action_type, success=False, file_path=file_path, error=e.message)

        fields = {
            "entity_id": pushed.entity_id,
            "file_path": file_path,
            "imported_version": pushed.version,
            "format": "xml",
            "context_fields": self._context_fields(),
        }
        if self.use_git:
            if entry is None:
                commit = self.commit_hash_of(path)
                fields["scm_commit_current"] = commit
                fields["scm_commit_remote"] = commit
            elif entry.scm_commit_current is not None:
                fields["scm_commit_current"] = entry.scm_commit_current
                fields["scm_commit_remote"] = entry.scm_commit_current

        self.store.stage(StagedRecord(**fields))
        action_type = ActionType.CREATE if entry is None else ActionType.UPDATE
        self.console.print_debug(f"Imported {file_path} as question {pushed.entity_id}")
        return ItemResult(pushed.entity_id, action_type, file_path=file_path)

    # ------------------------------------------------------------------
    # Merge, recovery, tidy
    # ------------------------------------------------------------------

    def merge_staging(self) -> int:
        """Merge the staging log into the manifest and delete it."""
        return self.store.merge_staging()

    def recover(self) -> int:
        return recover(self.store, self.console)

    def tidy(self) -> list[ManifestEntry]:
        return tidy(self.store, self.remote, self.scope, self.console)

    def find_orphans(self) -> list[OrphanCandidate]:
        return find_orphans(self.store, self.remote, self.scope, self.console, subdirectory=self.subdirectory)

    def delete_orphans(self, confirm_fn: Callable[[OrphanCandidate], bool]) -> RunResult:
        return delete_orphans(
            self.store, self.remote, self.scope, confirm_fn, self.console, subdirectory=self.subdirectory
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _new_context(self) -> ManifestContext:
        return ManifestContext.from_scope(
            self.scope,
            default_subdirectory=self.subdirectory or None,
            default_ignore_category=self.ignore_category,
            moodle_url=self.moodle_url,
        )

    def create_repo(self) -> RunResult:
        """
        Populate an empty repository from Moodle.

        Raises:
            ConfigError: If the manifest already exists.
        """
        if self.store.exists():
            raise ConfigError(f"Manifest {self.store.path} already exists. Use export to update the repository.")

        self.store.load_or_create(self._new_context())

        result = self.export_new()
        result.operation = "create"
        if self.resolver.matched_directory is not None:
            self.manifest.context.default_subdirectory = self._relative(self.resolver.matched_directory)
        self.merge_staging()
        self.store.save()
        return result

    def record_commits(self) -> None:
        """Mark every tracked file as in sync at its current commit."""
        if self.commit_hash_of is None:
            return
        for entry in self.manifest.questions:
            commit = self.commit_hash_of(self.root / entry.file_path)
            entry.scm_commit_current = commit
            entry.scm_commit_remote = commit
        self.store.save()

    def export_repo(self) -> RunResult:
        """Refresh tracked files, export new questions, merge and tidy."""
        self.recover()
        self.store.load()

        result = RunResult("export")
        result.extend(self.refresh_existing())
        result.extend(self.export_new())
        self.merge_staging()
        result.removed.extend(entry.entity_id for entry in self.tidy())
        return result

    def import_repo(self, *, check_versions: bool = True) -> RunResult:
        """
        Push the repository to Moodle.

        A repository without a manifest for this context (first import into
        another Moodle instance or a new quiz) starts an empty one.

        Raises:
            VersionConflictError: If Moodle changed since the last export.
            CategoryImportError: If a category cannot be created.
        """
        self.recover()
        self.store.load_or_create(self._new_context())
        if check_versions:
            self.check_versions()

        result = RunResult("import")
        result.extend(self.import_categories())
        result.extend(self.import_questions())
        self.merge_staging()
        self.store.save()
        return result

    def status(self) -> RepoStatus:
        """Compare the manifest with the files on disk (no remote calls)."""
        manifest = self.manifest
        status = RepoStatus(manifest_path=self.store.path, tracked=len(manifest.questions))
        status.in_scope = len(manifest.entries_in_scope(self.subdirectory))
        status.missing_files = [
            entry.file_path for entry in manifest.questions if not (self.root / entry.file_path).exists()
        ]

        tracked = {entry.file_path for entry in manifest.questions}
        for _, files in walk_tree(self.root, suffix=QUESTION_SUFFIX):
            for path in files:
                if path.name == CATEGORY_FILE:
                    continue
                relative = self._relative(path)
                if relative not in tracked:
                    status.untracked_files.append(relative)

        status.pending_staged = len(self.store.staging.read())
        return status


def _write(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Could not write {path}: {e}") from e
