# qbsync Remote Responses
# Decode webservice bodies once into Ok | RemoteError

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from qbsync.errors import TransportError


@dataclass(frozen=True)
class Ok:
    """Successful response payload."""

    payload: Any

    def unwrap(self) -> Any:
        return self.payload


@dataclass(frozen=True)
class RemoteError:
    """Malformed response or exception reported by the server."""

    message: str
    debuginfo: Optional[str] = None
    raw: Optional[str] = None

    def unwrap(self) -> Any:
        raise TransportError(self.message, self.debuginfo)


Response = Union[Ok, RemoteError]


def decode_response(body: str | bytes | None) -> Response:
    """
    Decode a raw webservice body.

    Broken JSON and payloads shaped like ``{"exception": ..., "message": ...}``
    both become ``RemoteError``.

    Args:
        body: Raw response body.

    Returns:
        Ok with the decoded payload, or RemoteError.
    """
    if body is None or body == "" or body == b"":
        return RemoteError("Empty response returned from Moodle.", raw="")

    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return RemoteError("Broken JSON returned from Moodle.", debuginfo=body, raw=body)

    if payload is None:
        return RemoteError("Broken JSON returned from Moodle.", debuginfo=body, raw=body)

    if isinstance(payload, dict) and "exception" in payload:
        return RemoteError(
            str(payload.get("message") or payload["exception"]),
            debuginfo=payload.get("debuginfo"),
            raw=body,
        )

    return Ok(payload)
