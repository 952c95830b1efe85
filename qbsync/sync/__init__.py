# qbsync Sync Module
# Manifest, category mapping and the reconciliation engine

from qbsync.sync.actions import ActionType, ItemResult, RunResult, SyncAction, apply_entity
from qbsync.sync.category import (
    CATEGORY_FILE,
    CategoryResolver,
    category_segments,
    directories_to_path,
    in_scope,
    path_to_directories,
    read_category_marker,
    write_category_marker,
)
from qbsync.sync.course import (
    CourseResult,
    CourseSync,
    export_quiz_structure,
    find_quiz_structure,
    import_quiz_structure,
    quiz_directory,
    quiz_scope,
    quiz_structure_path,
    read_quiz_structure,
)
from qbsync.sync.document import CategoryDecl, EntityDocument, normalize_document, parse_entity_document
from qbsync.sync.engine import RepoStatus, SyncEngine, unique_file_name
from qbsync.sync.manifest import (
    Manifest,
    ManifestContext,
    ManifestEntry,
    ManifestStore,
    QuizLocation,
    StagedRecord,
    StagingLog,
    load_manifest,
    manifest_path_for,
    save_manifest,
    staging_path_for,
)
from qbsync.sync.tidy import OrphanCandidate, OrphanKind, delete_orphans, find_orphans, recover, tidy

__all__ = [
    # Actions
    "ActionType",
    "SyncAction",
    "ItemResult",
    "RunResult",
    "apply_entity",
    # Categories
    "CATEGORY_FILE",
    "CategoryResolver",
    "category_segments",
    "directories_to_path",
    "in_scope",
    "path_to_directories",
    "read_category_marker",
    "write_category_marker",
    # Documents
    "CategoryDecl",
    "EntityDocument",
    "normalize_document",
    "parse_entity_document",
    # Manifest
    "Manifest",
    "ManifestContext",
    "ManifestEntry",
    "ManifestStore",
    "QuizLocation",
    "StagedRecord",
    "StagingLog",
    "load_manifest",
    "save_manifest",
    "manifest_path_for",
    "staging_path_for",
    # Engine
    "SyncEngine",
    "RepoStatus",
    "unique_file_name",
    # Whole course
    "CourseSync",
    "CourseResult",
    "export_quiz_structure",
    "import_quiz_structure",
    "find_quiz_structure",
    "read_quiz_structure",
    "quiz_directory",
    "quiz_scope",
    "quiz_structure_path",
    # Recovery
    "OrphanCandidate",
    "OrphanKind",
    "recover",
    "tidy",
    "find_orphans",
    "delete_orphans",
]
