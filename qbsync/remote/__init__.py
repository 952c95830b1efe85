# qbsync Remote Module
# Remote listing adapter: scope, response decoding and the Moodle client

from qbsync.remote.base import (
    ContentRef,
    ContextInfo,
    FetchedEntity,
    PushResult,
    QuizInfo,
    RemoteEntity,
    RemoteService,
    VersionTriple,
    same_version,
)
from qbsync.remote.client import MoodleClient
from qbsync.remote.response import Ok, RemoteError, Response, decode_response
from qbsync.remote.scope import ContextLevel, Scope

__all__ = [
    # Scope
    "ContextLevel",
    "Scope",
    # Responses
    "Ok",
    "RemoteError",
    "Response",
    "decode_response",
    # Interface
    "RemoteService",
    "RemoteEntity",
    "FetchedEntity",
    "ContentRef",
    "ContextInfo",
    "QuizInfo",
    "VersionTriple",
    "PushResult",
    "same_version",
    # Client
    "MoodleClient",
]
