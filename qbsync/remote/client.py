# qbsync Moodle Client
# requests-based implementation of RemoteService for the gitsync webservices

from pathlib import Path
from typing import Any, Optional

import requests

from qbsync.errors import TransportError
from qbsync.remote.base import (
    ContentRef,
    ContextInfo,
    FetchedEntity,
    PushResult,
    QuizInfo,
    RemoteEntity,
    VersionTriple,
)
from qbsync.remote.response import RemoteError, Response, decode_response
from qbsync.remote.scope import Scope

WS_PATH = "/webservice/rest/server.php"
UPLOAD_PATH = "/webservice/upload.php"

WS_LIST = "qbank_gitsync_get_question_list"
WS_EXPORT = "qbank_gitsync_export_question"
WS_IMPORT = "qbank_gitsync_import_question"
WS_DELETE = "qbank_gitsync_delete_question"
WS_EXPORT_QUIZ = "qbank_gitsync_export_quiz_data"
WS_IMPORT_QUIZ = "qbank_gitsync_import_quiz_data"


class MoodleClient:
    """
    Client for the qbank_gitsync webservice functions.

    Every body is decoded once by ``decode_response``; callers only ever see
    plain data or a ``TransportError``.
    """

    def __init__(self, url: str, token: str, *, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def ws_url(self) -> str:
        return f"{self.url}{WS_PATH}"

    @property
    def upload_url(self) -> str:
        return f"{self.url}{UPLOAD_PATH}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, url: str, data: dict[str, Any], files: Optional[dict[str, Any]] = None) -> Response:
        try:
            response = self.session.post(url, data=data, files=files, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            return RemoteError(f"Request to {url} failed: {e}")
        return decode_response(response.text)

    def call(self, function: str, params: dict[str, Any]) -> Any:
        """
        Call a webservice function.

        Args:
            function: Webservice function name.
            params: Function parameters (nested values are flattened).

        Returns:
            Decoded JSON payload.

        Raises:
            TransportError: On HTTP failure, broken JSON or exception payload.
        """
        data = {
            "wstoken": self.token,
            "wsfunction": function,
            "moodlewsrestformat": "json",
        }
        data.update(_flatten(params))
        return self._post(self.ws_url, data).unwrap()

    # ------------------------------------------------------------------
    # RemoteService
    # ------------------------------------------------------------------

    def list_entities(self, scope: Scope, entity_ids: Optional[list[str]] = None) -> list[RemoteEntity]:
        params = scope.to_params()
        params["contextonly"] = 0
        params["qbankentryids"] = list(entity_ids or [])
        payload = self.call(WS_LIST, params)

        if isinstance(payload, dict):
            questions = payload.get("questions", [])
        elif isinstance(payload, list):
            questions = payload
        else:
            raise TransportError("Failed to get list of questions from Moodle.")

        return [
            RemoteEntity(
                entity_id=str(q["questionbankentryid"]),
                name=q.get("name", ""),
                category_path=q.get("questioncategory") or q.get("categoryname") or "",
                version=q.get("version"),
            )
            for q in questions
        ]

    def context_info(self, scope: Scope) -> ContextInfo:
        """Describe the context a scope resolves to, without listing questions."""
        params = scope.to_params()
        params["contextonly"] = 1
        params["qbankentryids"] = []
        payload = self.call(WS_LIST, params)
        if not isinstance(payload, dict):
            raise TransportError("Failed to get context information from Moodle.")

        info = payload.get("contextinfo") or {}
        return ContextInfo(
            context_level=info.get("contextlevel") or "",
            course_name=info.get("coursename") or "",
            course_id=str(info.get("courseid") or ""),
            category_name=info.get("categoryname") or "",
            module_name=info.get("modulename") or "",
            instance_id=str(info.get("instanceid") or ""),
            question_category=info.get("qcategoryname") or "",
            quizzes=[
                QuizInfo(instance_id=str(quiz["instanceid"]), name=quiz.get("name", ""))
                for quiz in payload.get("quizzes") or []
            ],
        )

    def fetch(self, entity_id: str, include_category: bool) -> FetchedEntity:
        payload = self.call(
            WS_EXPORT,
            {"questionbankentryid": entity_id, "includecategory": int(include_category)},
        )
        if not isinstance(payload, dict) or "question" not in payload:
            raise TransportError(f"Unexpected export response for question {entity_id}.")
        return FetchedEntity(entity_id=entity_id, content=payload["question"], version=payload.get("version"))

    def upload(self, path: Path) -> ContentRef:
        with open(path, "rb") as f:
            response = self._post(self.upload_url, {"token": self.token}, files={"file_1": (path.name, f)})
        payload = response.unwrap()
        if not isinstance(payload, list) or not payload:
            raise TransportError(f"Upload of {path.name} returned no file information.")
        info = payload[0]
        return ContentRef(
            item_id=str(info["itemid"]),
            file_name=info.get("filename", path.name),
            component=info.get("component", "user"),
            file_area=info.get("filearea", "draft"),
            context_id=str(info["contextid"]) if info.get("contextid") is not None else None,
        )

    def import_category(self, content_ref: ContentRef, scope: Scope) -> None:
        params = scope.to_params()
        params.update(
            {
                "questionbankentryid": "",
                "importedversion": "",
                "exportedversion": "",
                "qcategoryname": "",
                "fileinfo": _file_info(content_ref),
            }
        )
        self.call(WS_IMPORT, params)

    def push(
        self,
        entity_id: Optional[str],
        content_ref: ContentRef,
        versions: VersionTriple,
        scope: Scope,
        category_path: str,
    ) -> PushResult:
        params = scope.to_params()
        params.update(
            {
                "questionbankentryid": entity_id or "",
                "importedversion": versions.imported_version or "",
                "exportedversion": versions.exported_version or "",
                "qcategoryname": category_path,
                "fileinfo": _file_info(content_ref),
            }
        )
        payload = self.call(WS_IMPORT, params)
        if not isinstance(payload, dict) or not payload.get("questionbankentryid"):
            raise TransportError(f"Import of {content_ref.file_name} returned no question id.")
        return PushResult(entity_id=str(payload["questionbankentryid"]), version=payload.get("version"))

    def delete(self, entity_id: str) -> bool:
        payload = self.call(WS_DELETE, {"questionbankentryid": entity_id})
        return bool(isinstance(payload, dict) and payload.get("success"))

    def export_quiz_data(self, module_id: str) -> dict[str, Any]:
        """
        Fetch the structure of a quiz.

        Returns:
            ``quiz`` settings, ``sections`` and ``questions`` (slots with the
            question bank entry id of each question).
        """
        payload = self.call(WS_EXPORT_QUIZ, {"moduleid": module_id, "quizname": ""})
        if not isinstance(payload, dict) or "quiz" not in payload:
            raise TransportError(f"Unexpected quiz export response for module {module_id}.")
        return payload

    def import_quiz_data(
        self,
        quiz: dict[str, Any],
        sections: list[dict[str, Any]],
        questions: list[dict[str, Any]],
        feedback: list[dict[str, Any]],
    ) -> Optional[str]:
        """
        Create or update a quiz.

        Questions are only added when ``quiz["cmid"]`` names an existing quiz.

        Returns:
            Course module id of the quiz, or None if Moodle did not report one.
        """
        payload = self.call(
            WS_IMPORT_QUIZ,
            {"quiz": quiz, "sections": sections, "questions": questions, "feedback": feedback},
        )
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected quiz import response for {quiz.get('name', '')}.")
        cmid = payload.get("cmid")
        return str(cmid) if cmid else None


def _file_info(content_ref: ContentRef) -> dict[str, Any]:
    return {
        "component": content_ref.component,
        "contextid": content_ref.context_id or "",
        "filearea": content_ref.file_area,
        "userid": "",
        "filename": content_ref.file_name,
        "filepath": "/",
        "itemid": content_ref.item_id,
    }


def _flatten(params: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested params the way Moodle's REST server expects (``a[b]``, ``a[0]``)."""
    flat: dict[str, Any] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            flat.update(_flatten(dict(enumerate(value)), name))
        elif value is None:
            flat[name] = ""
        elif isinstance(value, bool):
            flat[name] = int(value)
        else:
            flat[name] = value
    return flat
