# qbsync Test Fixtures
# Pytest fixtures and an in-memory Moodle for qbsync tests

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Optional

import pytest
import yaml

from qbsync.errors import TransportError
from qbsync.output.console import Console
from qbsync.remote.base import (
    ContentRef,
    ContextInfo,
    FetchedEntity,
    PushResult,
    QuizInfo,
    RemoteEntity,
    VersionTriple,
)
from qbsync.remote.scope import ContextLevel, Scope
from qbsync.sync.category import in_scope, read_category_marker
from qbsync.sync.engine import SyncEngine
from qbsync.sync.manifest import ManifestEntry, ManifestStore

MANIFEST_NAME = "local_course_course-1_question_manifest.json"


def question_xml(name: str, category: Optional[str] = None, text: str = "What is 1 + 1?") -> str:
    """Question document as the export webservice returns it."""
    category_block = ""
    if category is not None:
        category_block = f'<question type="category"><category><text>{category}</text></category></question>'
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f"<quiz>{category_block}"
        f'<question type="shortanswer"><name><text>{name}</text></name>'
        f'<questiontext format="html"><text>{text}</text></questiontext></question>'
        "</quiz>"
    )


class FakeRemote:
    """
    In-memory RemoteService.

    Questions are kept as ``{id: {"name", "category", "version", "quiz"}}``.
    Questions with a ``quiz`` belong to that quiz's bank and are only listed
    for its module scope. Quizzes are kept as ``{cmid: {"name", "slots"}}``.
    """

    def __init__(self):
        self.questions: dict[str, dict] = {}
        self.moved: set[str] = set()
        self.fail_fetch: set[str] = set()
        self.fail_push: set[str] = set()
        self.fail_list = False
        self.fail_category_import = False
        self.refuse_delete: set[str] = set()
        self.list_calls: list[tuple[Scope, Optional[list[str]]]] = []
        self.fetch_calls: list[tuple[str, bool]] = []
        self.uploads: dict[str, Path] = {}
        self.imported_categories: list[str] = []
        self.pushes: list[dict] = []
        self.deleted: list[str] = []
        self.quizzes: dict[str, dict] = {}
        self.quiz_imports: list[dict] = []
        self.fail_quiz_create = False
        self.context_calls: list[Scope] = []
        self._next_id = 100

    def add(self, entity_id: str, name: str, category: str, version: int = 1, quiz: Optional[str] = None) -> None:
        self.questions[entity_id] = {"name": name, "category": category, "version": version, "quiz": quiz}

    def add_quiz(self, cmid: str, name: str, slots: Optional[list[str]] = None) -> None:
        self.quizzes[cmid] = {"name": name, "slots": list(slots or [])}

    @staticmethod
    def _bank_of(scope: Scope) -> Optional[str]:
        return scope.instance_id if scope.context_level == ContextLevel.MODULE else None

    def _entity(self, entity_id: str) -> RemoteEntity:
        question = self.questions[entity_id]
        return RemoteEntity(entity_id, question["name"], question["category"], question["version"])

    def list_entities(self, scope: Scope, entity_ids: Optional[list[str]] = None) -> list[RemoteEntity]:
        self.list_calls.append((scope, entity_ids))
        if self.fail_list:
            raise TransportError("Broken JSON returned from Moodle.")
        if entity_ids:
            return [self._entity(i) for i in entity_ids if i in self.questions]
        return [
            self._entity(i)
            for i, question in self.questions.items()
            if i not in self.moved
            and question["quiz"] == self._bank_of(scope)
            and in_scope(question["category"], scope.category_name)
        ]

    def fetch(self, entity_id: str, include_category: bool) -> FetchedEntity:
        self.fetch_calls.append((entity_id, include_category))
        if entity_id in self.fail_fetch:
            raise TransportError("No question found", debuginfo="qbank_gitsync")
        question = self.questions[entity_id]
        category = question["category"] if include_category else None
        content = question_xml(question["name"], category, text=f"Version {question['version']}")
        return FetchedEntity(entity_id, content, question["version"])

    def upload(self, path: Path) -> ContentRef:
        item_id = str(len(self.uploads) + 1)
        self.uploads[item_id] = path
        return ContentRef(item_id=item_id, file_name=path.name)

    def import_category(self, content_ref: ContentRef, scope: Scope) -> None:
        if self.fail_category_import:
            raise TransportError("Category could not be created")
        self.imported_categories.append(read_category_marker(self.uploads[content_ref.item_id].parent))

    def push(
        self,
        entity_id: Optional[str],
        content_ref: ContentRef,
        versions: VersionTriple,
        scope: Scope,
        category_path: str,
    ) -> PushResult:
        path = self.uploads[content_ref.item_id]
        if path.name in self.fail_push:
            raise TransportError("Import failed")
        self.pushes.append(
            {"entity_id": entity_id, "versions": versions, "category": category_path, "file": path.name}
        )
        if entity_id is None:
            entity_id = str(self._next_id)
            self._next_id += 1
            self.add(entity_id, path.stem, category_path, quiz=self._bank_of(scope))
        else:
            self.questions[entity_id]["version"] += 1
        return PushResult(entity_id, self.questions[entity_id]["version"])

    def delete(self, entity_id: str) -> bool:
        if entity_id in self.refuse_delete:
            return False
        self.deleted.append(entity_id)
        self.questions.pop(entity_id, None)
        return True

    def context_info(self, scope: Scope) -> ContextInfo:
        self.context_calls.append(scope)
        if self.fail_list:
            raise TransportError("Broken JSON returned from Moodle.")
        quizzes = []
        if scope.context_level == ContextLevel.COURSE:
            quizzes = [QuizInfo(cmid, quiz["name"]) for cmid, quiz in self.quizzes.items()]
        module_name = ""
        if scope.context_level == ContextLevel.MODULE and scope.instance_id in self.quizzes:
            module_name = self.quizzes[scope.instance_id]["name"]
        return ContextInfo(
            context_level=scope.context_level.value,
            course_name=scope.course_name or "Course 1",
            course_id="5",
            module_name=module_name,
            question_category=scope.category_name or "top",
            quizzes=quizzes,
        )

    def export_quiz_data(self, module_id: str) -> dict:
        quiz = self.quizzes[module_id]
        return {
            "quiz": {"name": quiz["name"], "intro": "", "introformat": "1"},
            "sections": [{"firstslot": "1", "heading": "", "shufflequestions": False}],
            "questions": [
                {"questionbankentryid": entity_id, "slot": str(slot), "page": "1", "requireprevious": False,
                 "maxmark": "1.0000000"}
                for slot, entity_id in enumerate(quiz["slots"], start=1)
            ],
        }

    def import_quiz_data(self, quiz: dict, sections: list, questions: list, feedback: list) -> Optional[str]:
        self.quiz_imports.append({"quiz": quiz, "sections": sections, "questions": questions, "feedback": feedback})
        if self.fail_quiz_create:
            return None
        cmid = quiz["cmid"]
        if not cmid:
            cmid = str(self._next_id)
            self._next_id += 1
            self.add_quiz(cmid, quiz["name"])
        if questions:
            self.quizzes[cmid]["slots"] = [question["questionbankentryid"] for question in questions]
        return cmid


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary home directory."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("QBSYNC_CONFIG", raising=False)
    return home


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Commit identity for tests that run real git commands."""
    for prefix in ("GIT_AUTHOR", "GIT_COMMITTER"):
        monkeypatch.setenv(f"{prefix}_NAME", "Test User")
        monkeypatch.setenv(f"{prefix}_EMAIL", "test@example.com")


@pytest.fixture
def repo_root(temp_dir: Path) -> Path:
    """Empty question repository directory."""
    root = temp_dir / "repo"
    root.mkdir()
    return root


@pytest.fixture
def store(repo_root: Path) -> ManifestStore:
    """Manifest store for the test repository."""
    return ManifestStore(repo_root / MANIFEST_NAME)


@pytest.fixture
def scope() -> Scope:
    """Course level scope without a category filter."""
    return Scope(context_level=ContextLevel.COURSE, course_name="Course 1")


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def quiet_console() -> Console:
    return Console(colored=False, quiet=True)


@pytest.fixture
def make_engine(remote: FakeRemote, store: ManifestStore, scope: Scope, quiet_console: Console) -> Callable:
    """Factory for engines over the fake remote and the test repository."""

    def _make(**kwargs) -> SyncEngine:
        engine_scope = kwargs.pop("scope", scope)
        return SyncEngine(remote, store, engine_scope, console=quiet_console, **kwargs)

    return _make


@pytest.fixture
def tracked_repo(repo_root: Path, store: ManifestStore, scope: Scope) -> ManifestStore:
    """
    Repository with four tracked questions on disk.

    ``top/subcategory`` holds 1 and 2, ``top/subcategory2`` holds 3 and
    ``top/subcategory/child`` holds 4.
    """
    layout = {
        "1": ("top/subcategory", "q1.xml"),
        "2": ("top/subcategory", "q2.xml"),
        "3": ("top/subcategory2", "q3.xml"),
        "4": ("top/subcategory/child", "q4.xml"),
    }
    manifest = store.load_or_create()
    for entity_id, (category, file_name) in layout.items():
        directory = repo_root.joinpath(*category.split("/"))
        directory.mkdir(parents=True, exist_ok=True)
        marker = directory / "gitsync_category.xml"
        if not marker.exists():
            marker.write_text(
                f"<quiz><question type=\"category\"><category><text>{category}</text></category></question></quiz>",
                encoding="utf-8",
            )
        (directory / file_name).write_text(question_xml(f"Question {entity_id}"), encoding="utf-8")
        manifest.questions.append(
            ManifestEntry(
                entity_id=entity_id,
                file_path=f"{category}/{file_name}",
                imported_version=1,
                exported_version=1,
                context_fields=scope.context_fields(),
            )
        )
    store.save()
    return store


@pytest.fixture
def config_file(temp_home: Path) -> Path:
    """Write a valid configuration to the default location."""
    config_dir = temp_home / ".config" / "qbsync"
    config_dir.mkdir(parents=True)
    config_path = config_dir / "config.yaml"
    data = {
        "instances": {
            "local": {"url": "http://moodle.test/", "token": "secret-token"},
        },
        "default_instance": "local",
        "repository": {"root_directory": str(temp_home / "questions")},
    }
    config_path.write_text(yaml.dump(data), encoding="utf-8")
    return config_path
