# Tests for qbsync.remote
# Response decoding, scopes and the Moodle webservice client

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from qbsync.errors import ConfigError, TransportError
from qbsync.remote.base import ContentRef, ContextInfo, QuizInfo, VersionTriple, same_version
from qbsync.remote.client import (
    WS_DELETE,
    WS_EXPORT,
    WS_EXPORT_QUIZ,
    WS_IMPORT,
    WS_IMPORT_QUIZ,
    WS_LIST,
    MoodleClient,
)
from qbsync.remote.response import Ok, RemoteError, decode_response
from qbsync.remote.scope import ContextLevel, Scope


def _session(*bodies) -> MagicMock:
    """Session whose posts answer with the given bodies in turn."""
    session = MagicMock()
    responses = []
    for body in bodies:
        response = MagicMock()
        response.text = body if isinstance(body, str) else json.dumps(body)
        responses.append(response)
    session.post.side_effect = responses
    return session


def _sent(session: MagicMock, index: int = 0) -> dict:
    return session.post.call_args_list[index].kwargs["data"]


class TestDecodeResponse:
    """Tests for decode_response."""

    def test_ok(self):
        response = decode_response('{"questions": []}')
        assert response == Ok({"questions": []})
        assert response.unwrap() == {"questions": []}

    def test_bytes(self):
        assert decode_response(b"[1, 2]").unwrap() == [1, 2]

    def test_broken_json(self):
        response = decode_response("<html>Fatal error</html>")
        assert isinstance(response, RemoteError)
        assert response.message == "Broken JSON returned from Moodle."
        assert response.debuginfo == "<html>Fatal error</html>"

    def test_empty(self):
        assert isinstance(decode_response(""), RemoteError)
        assert isinstance(decode_response(None), RemoteError)

    def test_null(self):
        assert isinstance(decode_response("null"), RemoteError)

    def test_exception_payload(self):
        body = json.dumps({"exception": "moodle_exception", "message": "No question found", "debuginfo": "id 3"})
        response = decode_response(body)
        assert isinstance(response, RemoteError)
        with pytest.raises(TransportError) as exc_info:
            response.unwrap()
        assert exc_info.value.message == "No question found"
        assert exc_info.value.describe() == "No question found\nid 3"


class TestScope:
    """Tests for Scope and ContextLevel."""

    def test_context_codes(self):
        assert ContextLevel.COURSE.code == 50
        assert ContextLevel.from_code(70) == ContextLevel.MODULE
        assert ContextLevel.from_code("40") == ContextLevel.COURSE_CATEGORY
        assert ContextLevel.from_code("system") == ContextLevel.SYSTEM

    def test_unknown_level(self):
        with pytest.raises(ConfigError):
            ContextLevel.from_code(99)

    def test_replace_is_a_copy(self):
        scope = Scope(context_level=ContextLevel.COURSE, course_name="Course 1")
        narrowed = scope.replace(category_name="top/A")
        assert scope.category_name is None
        assert narrowed.category_name == "top/A"
        assert narrowed.whole_context() == scope

    def test_to_params(self):
        params = Scope(context_level=ContextLevel.COURSE, course_name="Course 1", category_name="top").to_params()
        assert params["contextlevel"] == 50
        assert params["coursename"] == "Course 1"
        assert params["qcategoryname"] == "top"
        assert params["modulename"] == ""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"context_level": ContextLevel.SYSTEM},
            {"context_level": ContextLevel.COURSE_CATEGORY, "course_category": "Science"},
            {"context_level": ContextLevel.COURSE, "course_name": "Course 1"},
            {"context_level": ContextLevel.COURSE, "instance_id": "3"},
            {"context_level": ContextLevel.MODULE, "course_name": "Course 1", "module_name": "Quiz"},
            {"context_level": ContextLevel.MODULE, "instance_id": "12"},
        ],
    )
    def test_valid(self, kwargs):
        Scope(**kwargs).validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"context_level": ContextLevel.SYSTEM, "course_name": "Course 1"},
            {"context_level": ContextLevel.COURSE_CATEGORY},
            {"context_level": ContextLevel.COURSE},
            {"context_level": ContextLevel.COURSE, "course_name": "Course 1", "module_name": "Quiz"},
            {"context_level": ContextLevel.MODULE, "course_name": "Course 1"},
            {"context_level": ContextLevel.COURSE, "course_name": "C", "category_name": "top", "category_id": "4"},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigError):
            Scope(**kwargs).validate()

    def test_same_version(self):
        assert same_version(3, "3")
        assert not same_version(3, 4)
        assert not same_version(None, 1)
        assert same_version(None, None)


class TestMoodleClient:
    """Tests for MoodleClient against a mocked requests session."""

    @pytest.fixture
    def scope(self) -> Scope:
        return Scope(context_level=ContextLevel.COURSE, course_name="Course 1", category_name="top")

    def test_call_parameters(self, scope):
        session = _session({"questions": []})
        client = MoodleClient("http://moodle.test/", "secret", session=session)
        client.list_entities(scope)

        args, kwargs = session.post.call_args
        assert args[0] == "http://moodle.test/webservice/rest/server.php"
        data = kwargs["data"]
        assert data["wstoken"] == "secret"
        assert data["wsfunction"] == WS_LIST
        assert data["moodlewsrestformat"] == "json"
        assert data["contextlevel"] == 50
        assert data["qcategoryname"] == "top"
        assert kwargs["timeout"] == 60.0

    def test_list_entities(self, scope):
        session = _session(
            {
                "contextinfo": {"contextlevel": "course"},
                "questions": [
                    {"questionbankentryid": 5, "name": "Q", "questioncategory": "top/A", "version": "2"},
                ],
            }
        )
        entities = MoodleClient("http://moodle.test", "t", session=session).list_entities(scope)

        assert len(entities) == 1
        assert entities[0].entity_id == "5"
        assert entities[0].category_path == "top/A"
        assert entities[0].version == "2"

    def test_list_by_ids(self, scope):
        session = _session([])
        MoodleClient("http://moodle.test", "t", session=session).list_entities(scope, entity_ids=["4", "9"])
        data = _sent(session)
        assert data["qbankentryids[0]"] == "4"
        assert data["qbankentryids[1]"] == "9"

    def test_context_info(self, scope):
        session = _session(
            {
                "contextinfo": {
                    "contextlevel": "course",
                    "categoryname": "",
                    "coursename": "Course 1",
                    "courseid": "5",
                    "modulename": "",
                    "instanceid": "5",
                    "qcategoryname": "top",
                    "qcategoryid": "12",
                },
                "questions": [],
                "quizzes": [{"instanceid": "7", "name": "Quiz 1"}],
            }
        )
        info = MoodleClient("http://moodle.test", "t", session=session).context_info(scope)

        assert info.course_name == "Course 1"
        assert info.course_id == "5"
        assert info.question_category == "top"
        assert info.quizzes == [QuizInfo("7", "Quiz 1")]
        assert _sent(session)["contextonly"] == 1

    def test_describe_context(self):
        info = ContextInfo(
            context_level="module", course_name="Course 1", module_name="Quiz 1", question_category="top"
        )
        assert info.describe() == [
            "Context level: module",
            "Instance: Course 1",
            "Quiz: Quiz 1",
            "Question category: top",
        ]

    def test_export_quiz_data(self):
        payload = {
            "quiz": {"name": "Quiz 1", "intro": "", "introformat": "1"},
            "sections": [],
            "questions": [{"questionbankentryid": "8", "slot": "1", "page": "1"}],
        }
        session = _session(payload)
        data = MoodleClient("http://moodle.test", "t", session=session).export_quiz_data("7")

        assert data == payload
        sent = _sent(session)
        assert sent["wsfunction"] == WS_EXPORT_QUIZ
        assert sent["moduleid"] == "7"

    def test_import_quiz_data(self):
        session = _session({"success": True, "cmid": 14})
        cmid = MoodleClient("http://moodle.test", "t", session=session).import_quiz_data(
            {"name": "Quiz 1", "cmid": ""},
            [{"firstslot": "1", "heading": "", "shufflequestions": False}],
            [],
            [],
        )

        assert cmid == "14"
        sent = _sent(session)
        assert sent["wsfunction"] == WS_IMPORT_QUIZ
        assert sent["quiz[name]"] == "Quiz 1"
        assert sent["sections[0][shufflequestions]"] == 0

    def test_fetch(self):
        session = _session({"question": "<quiz/>", "version": "3"})
        fetched = MoodleClient("http://moodle.test", "t", session=session).fetch("7", include_category=True)

        assert fetched.content == "<quiz/>"
        assert fetched.version == "3"
        data = _sent(session)
        assert data["wsfunction"] == WS_EXPORT
        assert data["questionbankentryid"] == "7"
        assert data["includecategory"] == 1

    def test_fetch_exception_payload(self):
        session = _session({"exception": "moodle_exception", "message": "No question found"})
        with pytest.raises(TransportError, match="No question found"):
            MoodleClient("http://moodle.test", "t", session=session).fetch("7", include_category=False)

    def test_broken_json(self):
        session = _session("Fatal error")
        with pytest.raises(TransportError, match="Broken JSON"):
            MoodleClient("http://moodle.test", "t", session=session).fetch("7", include_category=False)

    def test_http_failure(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError, match="failed"):
            MoodleClient("http://moodle.test", "t", session=session).delete("7")

    def test_upload(self, temp_dir: Path):
        path = temp_dir / "q1.xml"
        path.write_text("<quiz/>", encoding="utf-8")
        session = _session([{"itemid": 123, "filename": "q1.xml", "component": "user", "contextid": 5}])

        ref = MoodleClient("http://moodle.test", "t", session=session).upload(path)

        assert ref == ContentRef(item_id="123", file_name="q1.xml", context_id="5")
        args, kwargs = session.post.call_args
        assert args[0] == "http://moodle.test/webservice/upload.php"
        assert kwargs["data"] == {"token": "t"}
        assert "file_1" in kwargs["files"]

    def test_upload_without_file_info(self, temp_dir: Path):
        path = temp_dir / "q1.xml"
        path.write_text("<quiz/>", encoding="utf-8")
        session = _session([])
        with pytest.raises(TransportError):
            MoodleClient("http://moodle.test", "t", session=session).upload(path)

    def test_push(self, scope):
        session = _session({"questionbankentryid": "8", "version": "4"})
        ref = ContentRef(item_id="123", file_name="q1.xml", context_id="5")

        result = MoodleClient("http://moodle.test", "t", session=session).push(
            "8", ref, VersionTriple("8", 2, 3), scope.whole_context(), "top/A"
        )

        assert result.entity_id == "8"
        assert result.version == "4"
        data = _sent(session)
        assert data["wsfunction"] == WS_IMPORT
        assert data["questionbankentryid"] == "8"
        assert data["importedversion"] == 2
        assert data["exportedversion"] == 3
        assert data["qcategoryname"] == "top/A"
        assert data["fileinfo[itemid]"] == "123"
        assert data["fileinfo[filepath]"] == "/"
        assert data["fileinfo[contextid]"] == "5"

    def test_push_new(self, scope):
        session = _session({"questionbankentryid": "42", "version": "1"})
        ref = ContentRef(item_id="1", file_name="new.xml")
        result = MoodleClient("http://moodle.test", "t", session=session).push(
            None, ref, VersionTriple(), scope, "top"
        )
        assert result.entity_id == "42"
        assert _sent(session)["questionbankentryid"] == ""

    def test_push_without_id(self, scope):
        session = _session({"success": True})
        with pytest.raises(TransportError):
            MoodleClient("http://moodle.test", "t", session=session).push(
                None, ContentRef(item_id="1", file_name="x.xml"), VersionTriple(), scope, "top"
            )

    def test_import_category(self, scope):
        session = _session({"questionbankentryid": "", "success": True})
        ref = ContentRef(item_id="9", file_name="gitsync_category.xml")
        MoodleClient("http://moodle.test", "t", session=session).import_category(ref, scope.whole_context())

        data = _sent(session)
        assert data["qcategoryname"] == ""
        assert data["questionbankentryid"] == ""
        assert data["fileinfo[filename]"] == "gitsync_category.xml"

    def test_delete(self):
        session = _session({"success": True}, {"success": False})
        client = MoodleClient("http://moodle.test", "t", session=session)
        assert client.delete("3") is True
        assert client.delete("4") is False
        assert _sent(session)["wsfunction"] == WS_DELETE
