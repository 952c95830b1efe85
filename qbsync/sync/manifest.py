# qbsync Manifest
# Persisted entity <-> file mapping, plus the staging log merged into it

import json
import re
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from qbsync.errors import FilesystemError, ManifestNotFoundError, ManifestParseError, StagingLogError
from qbsync.remote.base import Version
from qbsync.remote.scope import ContextLevel, Scope
from qbsync.sync.category import in_scope
from qbsync.utils.paths import atomic_write, create_backup

MANIFEST_SUFFIX = "_question_manifest.json"
STAGING_SUFFIX = "_manifest_update.tmp"


class ManifestEntry(BaseModel):
    """One tracked question."""

    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(alias="questionbankentryid")
    file_path: str = Field(alias="filepath", description="POSIX path relative to the manifest directory")
    imported_version: Optional[Version] = Field(default=None, alias="version")
    exported_version: Optional[Version] = Field(default=None, alias="exportedversion")
    scm_commit_current: Optional[str] = Field(default=None, alias="currentcommit")
    scm_commit_remote: Optional[str] = Field(default=None, alias="moodlecommit")
    format: str = Field(default="xml")
    context_fields: Optional[dict[str, Any]] = Field(default=None, alias="context")

    @property
    def directory(self) -> str:
        """Relative directory of the question file ("" for the root)."""
        parent = PurePosixPath(self.file_path).parent.as_posix()
        return "" if parent == "." else parent

    @property
    def is_unchanged(self) -> bool:
        """File is at the commit the remote was last synced from."""
        return self.scm_commit_current is not None and self.scm_commit_current == self.scm_commit_remote


class StagedRecord(BaseModel):
    """
    Partial manifest entry written to the staging log.

    Only fields set on the record are applied when merged.
    """

    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(alias="questionbankentryid")
    file_path: Optional[str] = Field(default=None, alias="filepath")
    imported_version: Optional[Version] = Field(default=None, alias="version")
    exported_version: Optional[Version] = Field(default=None, alias="exportedversion")
    scm_commit_current: Optional[str] = Field(default=None, alias="currentcommit")
    scm_commit_remote: Optional[str] = Field(default=None, alias="moodlecommit")
    format: Optional[str] = None
    context_fields: Optional[dict[str, Any]] = Field(default=None, alias="context")

    def updates(self) -> dict[str, Any]:
        """Fields this record supplies, keyed by attribute name."""
        return self.model_dump(exclude_unset=True)


class ManifestContext(BaseModel):
    """Scope a manifest was created for."""

    model_config = ConfigDict(populate_by_name=True)

    context_level: Optional[int] = Field(default=None, alias="contextlevel")
    course_name: Optional[str] = Field(default=None, alias="coursename")
    module_name: Optional[str] = Field(default=None, alias="modulename")
    course_category: Optional[str] = Field(default=None, alias="coursecategory")
    instance_id: Optional[str] = Field(default=None, alias="instanceid")
    category_name: Optional[str] = Field(default=None, alias="qcategoryname")
    category_id: Optional[str] = Field(default=None, alias="defaultsubcategoryid")
    default_subdirectory: Optional[str] = Field(default=None, alias="defaultsubdirectory")
    default_ignore_category: Optional[str] = Field(default=None, alias="defaultignorecat")
    moodle_url: Optional[str] = Field(default=None, alias="moodleurl")

    @classmethod
    def from_scope(cls, scope: Scope, **extra: Any) -> "ManifestContext":
        """Build a context record from a request scope."""
        return cls(
            context_level=scope.context_level.code,
            course_name=scope.course_name,
            module_name=scope.module_name,
            course_category=scope.course_category,
            instance_id=scope.instance_id,
            category_name=scope.category_name,
            category_id=scope.category_id,
            **extra,
        )

    @property
    def is_empty(self) -> bool:
        return self.context_level is None

    def to_scope(self) -> Scope:
        """Scope the manifest was created for, category filter included."""
        if self.context_level is None:
            raise ManifestParseError("Manifest has no context level.")
        return Scope(
            context_level=ContextLevel.from_code(self.context_level),
            course_name=self.course_name,
            module_name=self.module_name,
            course_category=self.course_category,
            instance_id=self.instance_id,
            category_name=self.category_name or None,
            category_id=None if self.category_name else self.category_id or None,
        )


class QuizLocation(BaseModel):
    """Sibling repository of a quiz in a whole-course repository."""

    model_config = ConfigDict(populate_by_name=True)

    module_id: str = Field(alias="moduleid")
    directory: str = Field(description="Directory name, a sibling of the course repository")


class Manifest(BaseModel):
    """Context record plus the ordered list of tracked questions."""

    model_config = ConfigDict(populate_by_name=True)

    context: ManifestContext = Field(default_factory=ManifestContext)
    questions: list[ManifestEntry] = Field(default_factory=list)
    quizzes: Optional[list[QuizLocation]] = None

    def get(self, entity_id: str) -> Optional[ManifestEntry]:
        """Entry for an entity id."""
        for entry in self.questions:
            if entry.entity_id == str(entity_id):
                return entry
        return None

    def find_by_path(self, file_path: str) -> Optional[ManifestEntry]:
        """Entry tracking a relative file path."""
        for entry in self.questions:
            if entry.file_path == file_path:
                return entry
        return None

    def upsert(self, record: StagedRecord) -> ManifestEntry:
        """
        Apply a staged record.

        Updates the matching entry in place, keeping fields the record does
        not set, or appends a new entry.

        Args:
            record: Staged record keyed by entity id.

        Returns:
            The resulting entry.

        Raises:
            ManifestParseError: If the record is new without a file path, or
                its file path is tracked by another question.
        """
        if record.file_path is not None:
            owner = self.find_by_path(record.file_path)
            if owner is not None and owner.entity_id != record.entity_id:
                raise ManifestParseError(
                    f"File {record.file_path} of question {record.entity_id} "
                    f"is already tracked by question {owner.entity_id}."
                )

        updates = record.updates()
        for index, entry in enumerate(self.questions):
            if entry.entity_id == record.entity_id:
                merged = entry.model_copy(update=updates)
                self.questions[index] = merged
                return merged

        if record.file_path is None:
            raise ManifestParseError(f"Staged record for new question {record.entity_id} has no file path.")
        entry = ManifestEntry.model_validate(updates)
        self.questions.append(entry)
        return entry

    def quiz_location(self, module_id: str) -> Optional[QuizLocation]:
        """Recorded location of a quiz repository."""
        for location in self.quizzes or []:
            if location.module_id == str(module_id):
                return location
        return None

    def add_quiz_location(self, module_id: str, directory: str) -> QuizLocation:
        """Record (or move) the repository of a quiz."""
        location = QuizLocation(module_id=str(module_id), directory=directory)
        others = [
            q for q in self.quizzes or [] if q.module_id != location.module_id and q.directory != directory
        ]
        self.quizzes = [*others, location]
        return location

    def remove(self, entity_id: str) -> bool:
        """Remove an entry. Returns False if it was not tracked."""
        before = len(self.questions)
        self.questions = [entry for entry in self.questions if entry.entity_id != str(entity_id)]
        return len(self.questions) != before

    def remove_many(self, entity_ids: set[str]) -> list[ManifestEntry]:
        """Remove several entries, returning the removed ones."""
        wanted = {str(entity_id) for entity_id in entity_ids}
        removed = [entry for entry in self.questions if entry.entity_id in wanted]
        self.questions = [entry for entry in self.questions if entry.entity_id not in wanted]
        return removed

    def entries_in_scope(self, directory: Optional[str]) -> list[ManifestEntry]:
        """Entries whose file lies in ``directory`` or below it."""
        return [entry for entry in self.questions if in_scope(entry.directory, directory)]

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True), indent=2, ensure_ascii=False) + "\n"


# ----------------------------------------------------------------------
# File names
# ----------------------------------------------------------------------


def slugify(value: str) -> str:
    """Lowercase, with runs of other characters than a-z, 0-9 and _ replaced by ``-``."""
    return re.sub(r"[^a-z0-9_]+", "-", value.lower())


def manifest_path_for(root: Path, instance: str, scope: Scope) -> Path:
    """
    Manifest location for an instance and context.

    ``<instance>_<level>[_<names>]_question_manifest.json`` in ``root``.
    """
    level = scope.context_level
    names: list[str] = []
    if level == ContextLevel.COURSE_CATEGORY:
        names = [scope.course_category or scope.instance_id or ""]
    elif level == ContextLevel.COURSE:
        names = [scope.course_name or scope.instance_id or ""]
    elif level == ContextLevel.MODULE:
        if scope.course_name and scope.module_name:
            names = [scope.course_name, scope.module_name]
        else:
            names = [scope.instance_id or ""]

    stem = "_".join([instance, level.value, *[n for n in names if n]])
    return root / (slugify(stem) + MANIFEST_SUFFIX)


def staging_path_for(manifest_path: Path) -> Path:
    """Staging log beside a manifest."""
    stem = manifest_path.name.removesuffix(".json")
    return manifest_path.with_name(stem + STAGING_SUFFIX)


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------


def load_manifest(path: Path) -> Manifest:
    """
    Load a manifest file.

    Raises:
        ManifestNotFoundError: If the file does not exist.
        ManifestParseError: If the file is not a valid manifest.
    """
    if not path.exists():
        raise ManifestNotFoundError(f"Manifest file {path} does not exist.")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestParseError(f"Manifest file {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ManifestParseError(f"Manifest file {path} could not be read: {e}") from e

    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestParseError(f"Manifest file {path} is not a valid manifest: {e}") from e


def save_manifest(manifest: Manifest, path: Path) -> None:
    """
    Write a manifest atomically.

    Raises:
        FilesystemError: If the file cannot be written.
    """
    try:
        atomic_write(path, manifest.to_json())
    except OSError as e:
        raise FilesystemError(f"Could not write manifest {path}: {e}") from e


class StagingLog:
    """Append-only NDJSON log of staged manifest records."""

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, record: StagedRecord) -> None:
        """
        Append one record and flush it to disk.

        Raises:
            StagingLogError: If the log cannot be written.
        """
        line = json.dumps(record.model_dump(by_alias=True, exclude_unset=True), ensure_ascii=False)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
        except OSError as e:
            raise StagingLogError(f"Could not write to staging log {self.path}: {e}") from e

    def read(self) -> list[StagedRecord]:
        """
        Read all complete records.

        A final line without a newline is an interrupted write and is ignored.

        Raises:
            StagingLogError: If the log cannot be read or holds a broken record.
        """
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StagingLogError(f"Could not read staging log {self.path}: {e}") from e

        lines = text.split("\n")
        # Last element is "" when the file ends with a newline.
        complete = lines[:-1]

        records = []
        for number, line in enumerate(complete, start=1):
            if not line.strip():
                continue
            try:
                records.append(StagedRecord.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise StagingLogError(f"Broken record on line {number} of {self.path}: {e}") from e
        return records

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StagingLogError(f"Could not delete staging log {self.path}: {e}") from e

    def __len__(self) -> int:
        return len(self.read())


class ManifestStore:
    """
    Owns one manifest file and its staging log.

    Keeps the loaded manifest in memory; persistence is explicit.
    """

    def __init__(self, path: Path):
        self.path = path
        self.staging = StagingLog(staging_path_for(path))
        self._manifest: Optional[Manifest] = None

    @property
    def root(self) -> Path:
        """Repository root: question paths are relative to it."""
        return self.path.parent

    @property
    def manifest(self) -> Manifest:
        """Current manifest, loading it on first access."""
        if self._manifest is None:
            self._manifest = load_manifest(self.path)
        return self._manifest

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Manifest:
        """(Re)load the manifest from disk."""
        self._manifest = load_manifest(self.path)
        return self._manifest

    def load_or_create(self, context: Optional[ManifestContext] = None) -> Manifest:
        """Load the manifest, or start an empty one if the file is missing."""
        if self.path.exists():
            return self.load()
        self._manifest = Manifest(context=context or ManifestContext())
        return self._manifest

    def save(self, manifest: Optional[Manifest] = None) -> None:
        """Write the manifest (the in-memory one by default)."""
        if manifest is not None:
            self._manifest = manifest
        save_manifest(self.manifest, self.path)

    def backup(self) -> Optional[Path]:
        """Timestamped copy of the manifest file."""
        try:
            return create_backup(self.path)
        except OSError as e:
            raise FilesystemError(f"Could not back up manifest {self.path}: {e}") from e

    def stage(self, record: StagedRecord) -> None:
        """Append a record to the staging log."""
        self.staging.append(record)

    def merge_staging(self) -> int:
        """
        Merge the staging log into the manifest.

        Upserts every staged record, fills an empty manifest context from
        the first record, writes the manifest atomically and then deletes
        the log.

        Returns:
            Number of records merged (0 if there was no log).
        """
        if not self.staging.exists():
            return 0

        records = self.staging.read()
        manifest = self._manifest if self._manifest is not None else self.load_or_create()

        for record in records:
            manifest.upsert(record)

        if manifest.context.is_empty and records and records[0].context_fields:
            manifest.context = ManifestContext.model_validate(records[0].context_fields)

        self.save(manifest)
        self.staging.delete()
        return len(records)
