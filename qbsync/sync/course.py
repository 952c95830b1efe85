# qbsync Course Sync
# Whole-course runs: the course question bank plus one sibling repository per quiz

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from qbsync.errors import ConfigError, FilesystemError, QuizStructureError
from qbsync.output.console import Console
from qbsync.remote.base import ContextInfo, QuizInfo, RemoteService
from qbsync.remote.scope import ContextLevel, Scope
from qbsync.sync.actions import RunResult
from qbsync.sync.engine import SyncEngine
from qbsync.sync.manifest import Manifest, slugify
from qbsync.utils.paths import atomic_write, ensure_dir

QUIZ_STRUCTURE_SUFFIX = "_quiz.json"

# Settings Moodle needs to create a quiz that the structure export does not carry.
QUIZ_DEFAULTS = {"questionsperpage": "1", "grade": "10", "navmethod": "free"}

EngineFactory = Callable[[Path, Scope], SyncEngine]


def quiz_directory(course_root: Path, quiz_name: str) -> Path:
    """Sibling directory of a quiz repository: ``<course dir>_quiz_<quiz name>``."""
    return course_root.parent / f"{course_root.name}_quiz_{slugify(quiz_name)}"


def quiz_structure_path(directory: Path, quiz_name: str) -> Path:
    return directory / f"{slugify(quiz_name)}{QUIZ_STRUCTURE_SUFFIX}"


def quiz_scope(module_id: str) -> Scope:
    """Scope of a quiz's own question bank."""
    return Scope(context_level=ContextLevel.MODULE, instance_id=str(module_id))


def find_quiz_structure(directory: Path) -> Optional[Path]:
    """Structure file in a quiz repository, if there is one."""
    found = sorted(directory.glob(f"*{QUIZ_STRUCTURE_SUFFIX}"))
    return found[0] if found else None


def read_quiz_structure(path: Path) -> dict[str, Any]:
    """
    Load a quiz structure file.

    Raises:
        QuizStructureError: If the file cannot be read or holds no quiz.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise QuizStructureError(f"Unable to access or parse quiz structure file {path}: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("quiz"), dict):
        raise QuizStructureError(f"Quiz structure file {path} holds no quiz.")
    return data


def export_quiz_structure(
    remote: RemoteService,
    module_id: str,
    quiz_manifest: Manifest,
    directory: Path,
    course_manifest: Optional[Manifest] = None,
    console: Optional[Console] = None,
) -> Path:
    """
    Write the structure of a quiz into its repository.

    Question ids are replaced by file paths: ``quizfilepath`` for questions
    tracked in the quiz repository, ``nonquizfilepath`` for questions of the
    course repository. Questions tracked in neither are left out.

    Args:
        remote: Remote service.
        module_id: Course module id of the quiz.
        quiz_manifest: Manifest of the quiz repository.
        directory: Quiz repository root.
        course_manifest: Manifest of the course repository, if any.
        console: Console for diagnostics.

    Returns:
        Path of the written ``<quiz name>_quiz.json``.
    """
    console = console or Console(quiet=True)
    data = remote.export_quiz_data(module_id)
    quiz_name = data["quiz"].get("name") or str(module_id)

    quiz_paths = {entry.entity_id: entry.file_path for entry in quiz_manifest.questions}
    course_paths: dict[str, str] = {}
    if course_manifest is not None:
        course_paths = {entry.entity_id: entry.file_path for entry in course_manifest.questions}

    questions = []
    for question in data.get("questions") or []:
        question = dict(question)
        entity_id = str(question.pop("questionbankentryid", ""))
        if entity_id in quiz_paths:
            question["quizfilepath"] = quiz_paths[entity_id]
        elif entity_id in course_paths:
            question["nonquizfilepath"] = course_paths[entity_id]
        else:
            console.print_warning(
                f"Question {entity_id} in quiz {quiz_name} is not tracked by the quiz or course repository. "
                "It is left out of the structure file."
            )
            continue
        questions.append(question)
    data["questions"] = questions

    path = quiz_structure_path(directory, quiz_name)
    try:
        atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    except OSError as e:
        raise FilesystemError(f"Could not write quiz structure {path}: {e}") from e
    console.print_debug(f"Exported structure of quiz {quiz_name} to {path.name}")
    return path


def import_quiz_structure(
    remote: RemoteService,
    structure: dict[str, Any],
    course: ContextInfo,
    cmid: Optional[str] = None,
    quiz_manifest: Optional[Manifest] = None,
    course_manifest: Optional[Manifest] = None,
) -> Optional[str]:
    """
    Create or update a quiz from a structure file.

    Without ``cmid`` Moodle creates an empty quiz. With it, the questions of
    the structure are added, their ids looked up in the manifests.

    Args:
        remote: Remote service.
        structure: Contents of a quiz structure file.
        course: Context info of the course the quiz belongs to.
        cmid: Course module id of an existing quiz.
        quiz_manifest: Manifest of the quiz repository.
        course_manifest: Manifest of the course repository.

    Returns:
        Course module id of the quiz.

    Raises:
        QuizStructureError: If a question of the structure is not tracked.
    """
    quiz = {**QUIZ_DEFAULTS, **structure["quiz"]}
    quiz.update(coursename=course.course_name, courseid=course.course_id, cmid=cmid or "")

    questions = []
    if cmid:
        quiz_ids = _ids_by_path(quiz_manifest)
        course_ids = _ids_by_path(course_manifest)
        for question in structure.get("questions") or []:
            question = dict(question)
            if "quizfilepath" in question:
                file_path = question.pop("quizfilepath")
                entity_id = quiz_ids.get(file_path)
                label = f"Quiz repo: {file_path}"
            else:
                file_path = question.pop("nonquizfilepath", "")
                entity_id = course_ids.get(file_path)
                label = f"Non-quiz repo: {file_path}"
            if entity_id is None:
                raise QuizStructureError(
                    f"{label}: this question is in the quiz but not in the quiz or course manifest. Aborting."
                )
            question["questionbankentryid"] = entity_id
            questions.append(question)

    return remote.import_quiz_data(quiz, structure.get("sections") or [], questions, structure.get("feedback") or [])


def _ids_by_path(manifest: Optional[Manifest]) -> dict[str, str]:
    if manifest is None:
        return {}
    return {entry.file_path: entry.entity_id for entry in manifest.questions}


@dataclass
class CourseResult:
    """Results of a whole-course run, one per repository."""

    runs: list[tuple[str, RunResult]] = field(default_factory=list)
    structures: list[Path] = field(default_factory=list)

    def add(self, label: str, result: RunResult) -> RunResult:
        self.runs.append((label, result))
        return result

    @property
    def success(self) -> bool:
        return all(result.success for _, result in self.runs)


class CourseSync:
    """
    Sync a course question bank together with the banks of its quizzes.

    Each quiz gets its own repository next to the course repository. The
    course manifest records which directory belongs to which quiz.
    """

    def __init__(
        self,
        course_engine: SyncEngine,
        engine_for: EngineFactory,
        *,
        on_created: Optional[Callable[[SyncEngine], None]] = None,
        console: Optional[Console] = None,
    ):
        """
        Args:
            course_engine: Engine of the course repository.
            engine_for: Builds the engine of a quiz repository from its
                directory and scope.
            on_created: Called with each engine, the course one included,
                after its repository was created.
            console: Console for diagnostics.
        """
        if course_engine.scope.context_level != ContextLevel.COURSE:
            raise ConfigError("Quizzes can only be synced together with a course context.")
        self.course_engine = course_engine
        self.engine_for = engine_for
        self.on_created = on_created
        self.console = console or course_engine.console

    @property
    def remote(self) -> RemoteService:
        return self.course_engine.remote

    @property
    def course_root(self) -> Path:
        return self.course_engine.root

    @property
    def course_manifest(self) -> Manifest:
        return self.course_engine.manifest

    def context(self) -> ContextInfo:
        """Course context, including its quizzes."""
        return self.remote.context_info(self.course_engine.scope.whole_context())

    def _quiz_directories(self) -> list[Path]:
        """Quiz repositories on disk, recorded or not."""
        recorded = {self.course_root.parent / location.directory for location in self.course_manifest.quizzes or []}
        found = {path for path in self.course_root.parent.glob(f"{self.course_root.name}_quiz_*") if path.is_dir()}
        return sorted(recorded | found)

    def _export_structure(self, engine: SyncEngine, module_id: str, result: CourseResult) -> None:
        path = export_quiz_structure(
            self.remote, module_id, engine.manifest, engine.root, self.course_manifest, self.console
        )
        result.structures.append(path)

    def _created(self, engine: SyncEngine) -> None:
        if self.on_created is not None:
            self.on_created(engine)

    def _create_quiz(self, quiz: QuizInfo, result: CourseResult) -> None:
        directory = ensure_dir(quiz_directory(self.course_root, quiz.name))
        self.console.print_info(f"Exporting quiz: {quiz.name} to {directory}")
        engine = self.engine_for(directory, quiz_scope(quiz.instance_id))
        result.add(quiz.name, engine.create_repo())
        self._export_structure(engine, quiz.instance_id, result)
        self._created(engine)
        self.course_manifest.add_quiz_location(quiz.instance_id, directory.name)

    def create(self) -> CourseResult:
        """
        Create the course repository, then a repository for each quiz.

        Returns:
            Results of the course and every quiz.
        """
        result = CourseResult()
        result.add(self.course_engine.scope.course_name or "Course", self.course_engine.create_repo())
        self._created(self.course_engine)
        for quiz in self.context().quizzes:
            self._create_quiz(quiz, result)
        self.course_engine.store.save()
        return result

    def export(self) -> CourseResult:
        """
        Export the course repository and every quiz.

        Quizzes without a repository get a new one. The structure file of
        every quiz is rewritten.
        """
        result = CourseResult()
        result.add(self.course_engine.scope.course_name or "Course", self.course_engine.export_repo())
        for quiz in self.context().quizzes:
            location = self.course_manifest.quiz_location(quiz.instance_id)
            if location is None:
                self._create_quiz(quiz, result)
                continue
            directory = self.course_root.parent / location.directory
            self.console.print_info(f"Exporting quiz: {quiz.name}")
            engine = self.engine_for(directory, quiz_scope(quiz.instance_id))
            result.add(quiz.name, engine.export_repo())
            self._export_structure(engine, quiz.instance_id, result)
        self.course_engine.store.save()
        return result

    def import_(self, *, check_versions: bool = True) -> CourseResult:
        """
        Import the course repository and every quiz repository.

        Quiz repositories of quizzes that exist in Moodle are imported into
        them; their structure in Moodle is not changed. Any other quiz
        repository with a structure file creates a new quiz.

        Raises:
            QuizStructureError: If Moodle does not create a quiz, or a
                structure names an untracked question.
        """
        result = CourseResult()
        result.add(
            self.course_engine.scope.course_name or "Course",
            self.course_engine.import_repo(check_versions=check_versions),
        )
        course = self.context()
        existing = {quiz.instance_id for quiz in course.quizzes}
        by_directory = {location.directory: location for location in self.course_manifest.quizzes or []}

        for directory in self._quiz_directories():
            location = by_directory.get(directory.name)
            if location is not None and location.module_id in existing:
                self.console.print_info(f"Importing quiz context: {directory.name}")
                engine = self.engine_for(directory, quiz_scope(location.module_id))
                result.add(directory.name, engine.import_repo(check_versions=check_versions))
            else:
                self._import_new_quiz(directory, course, result)

        self.course_engine.store.save()
        return result

    def _import_new_quiz(self, directory: Path, course: ContextInfo, result: CourseResult) -> None:
        structure_path = find_quiz_structure(directory)
        if structure_path is None:
            self.console.print_warning(f"{directory.name} has no quiz structure file. Not imported.")
            return
        structure = read_quiz_structure(structure_path)
        name = structure["quiz"].get("name") or directory.name

        self.console.print_info(f"Creating quiz: {name}")
        cmid = import_quiz_structure(self.remote, structure, course)
        if not cmid:
            raise QuizStructureError(f"Quiz {name} was not created for some reason. Aborting.")

        self.console.print_info(f"Importing quiz context: {name}")
        engine = self.engine_for(directory, quiz_scope(cmid))
        result.add(name, engine.import_repo(check_versions=False))

        self.console.print_info(f"Importing quiz structure: {name}")
        import_quiz_structure(self.remote, structure, course, cmid, engine.manifest, self.course_manifest)
        self.course_manifest.add_quiz_location(cmid, directory.name)
        result.structures.append(structure_path)
