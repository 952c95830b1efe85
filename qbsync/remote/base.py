# qbsync Remote Interface
# Data carried across the remote boundary and the service protocol

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from qbsync.remote.scope import Scope

Version = Union[int, str]


def same_version(first: Optional[Version], second: Optional[Version]) -> bool:
    """Compare opaque version tokens that may arrive as int or str."""
    if first is None or second is None:
        return first is None and second is None
    return str(first) == str(second)


@dataclass(frozen=True)
class RemoteEntity:
    """One question as listed by the server."""

    entity_id: str
    name: str = ""
    category_path: str = ""
    version: Optional[Version] = None


@dataclass(frozen=True)
class FetchedEntity:
    """Full question document returned by an export call."""

    entity_id: str
    content: str
    version: Optional[Version] = None


@dataclass(frozen=True)
class ContentRef:
    """Handle to a file uploaded to the server's draft area."""

    item_id: str
    file_name: str
    component: str = "user"
    file_area: str = "draft"
    context_id: Optional[str] = None


@dataclass(frozen=True)
class VersionTriple:
    """Identity and versions sent with a push."""

    entity_id: Optional[str] = None
    imported_version: Optional[Version] = None
    exported_version: Optional[Version] = None


@dataclass(frozen=True)
class PushResult:
    """Identity and version of a question after a push."""

    entity_id: str
    version: Optional[Version] = None


@dataclass(frozen=True)
class QuizInfo:
    """A quiz in a course, identified by its course module id."""

    instance_id: str
    name: str


@dataclass(frozen=True)
class ContextInfo:
    """What a scope resolves to on the server."""

    context_level: str = ""
    course_name: str = ""
    course_id: str = ""
    category_name: str = ""
    module_name: str = ""
    instance_id: str = ""
    question_category: str = ""
    quizzes: list[QuizInfo] = field(default_factory=list)

    def describe(self) -> list[str]:
        """Human readable lines, most general first."""
        lines = [f"Context level: {self.context_level}"]
        if self.category_name or self.course_name:
            lines.append(f"Instance: {self.category_name}{self.course_name}")
        if self.module_name:
            lines.append(f"Quiz: {self.module_name}")
        lines.append(f"Question category: {self.question_category}")
        return lines


class RemoteService(Protocol):
    """
    Operations the reconciliation engine needs from the server.

    Every method raises ``TransportError`` when the server answers with an
    exception payload or something that is not valid JSON.
    """

    def list_entities(self, scope: Scope, entity_ids: Optional[list[str]] = None) -> list[RemoteEntity]: ...

    def fetch(self, entity_id: str, include_category: bool) -> FetchedEntity: ...

    def upload(self, path: Path) -> ContentRef: ...

    def import_category(self, content_ref: ContentRef, scope: Scope) -> None: ...

    def push(
        self,
        entity_id: Optional[str],
        content_ref: ContentRef,
        versions: VersionTriple,
        scope: Scope,
        category_path: str,
    ) -> PushResult: ...

    def delete(self, entity_id: str) -> bool: ...

    def context_info(self, scope: Scope) -> ContextInfo: ...

    def export_quiz_data(self, module_id: str) -> dict[str, Any]: ...

    def import_quiz_data(
        self,
        quiz: dict[str, Any],
        sections: list[dict[str, Any]],
        questions: list[dict[str, Any]],
        feedback: list[dict[str, Any]],
    ) -> Optional[str]: ...
