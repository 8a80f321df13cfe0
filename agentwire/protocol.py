"""JSON-RPC 2.0 message types used by the Model Context Protocol."""

from __future__ import annotations

import itertools
import json
import threading
import time
import uuid
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

JSONRPC_VERSION = "2.0"


class ErrorCode(IntEnum):
    """Error codes defined by the JSON-RPC 2.0 specification."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class JsonRpcError:
    """The error member of a JSON-RPC response."""

    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form of the error, leaving out empty data."""
        out: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out

    @classmethod
    def _from_wire(cls, raw: Any) -> JsonRpcError:
        if not isinstance(raw, dict):
            raise ValueError("error member must be an object")
        code = raw.get("code", 0)
        message = raw.get("message", "")
        if isinstance(code, bool) or not isinstance(code, int):
            raise ValueError("error code must be an integer")
        if not isinstance(message, str):
            raise ValueError("error message must be a string")
        return cls(code=code, message=message, data=raw.get("data"))


def _load_object(data: str | bytes, what: str) -> dict[str, Any]:
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"unmarshal {what}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"unmarshal {what}: expected a JSON object")
    return raw


def _string_field(raw: dict[str, Any], key: str, what: str) -> str:
    value = raw.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"unmarshal {what}: field {key!r} must be a string")
    return value


@dataclass
class Request:
    """A JSON-RPC 2.0 request or notification."""

    method: str
    params: dict[str, Any] | None = None
    id: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form, omitting a missing id and empty params."""
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            out["id"] = self.id
        out["method"] = self.method
        if self.params:
            out["params"] = self.params
        return out

    def to_json(self) -> str:
        """Serialise the request to a JSON string."""
        try:
            return json.dumps(self.to_dict())
        except (TypeError, ValueError) as exc:
            raise ValueError(f"marshal request: {exc}") from exc

    @classmethod
    def from_json(cls, data: str | bytes) -> Request:
        """Parse a request from JSON text."""
        raw = _load_object(data, "request")
        params = raw.get("params")
        if params is not None and not isinstance(params, dict):
            raise ValueError("unmarshal request: field 'params' must be an object")
        return cls(
            method=_string_field(raw, "method", "request"),
            params=params,
            id=raw.get("id"),
            jsonrpc=_string_field(raw, "jsonrpc", "request"),
        )

    def is_notification(self) -> bool:
        """True when the request carries no id."""
        return self.id is None


@dataclass
class Response:
    """A JSON-RPC 2.0 response."""

    id: Any = None
    result: Any = None
    error: JsonRpcError | None = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form, omitting members that are not set."""
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            out["id"] = self.id
        if self.result is not None:
            out["result"] = self.result
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out

    def to_json(self) -> str:
        """Serialise the response to a JSON string."""
        try:
            return json.dumps(self.to_dict())
        except (TypeError, ValueError) as exc:
            raise ValueError(f"marshal response: {exc}") from exc

    @classmethod
    def from_json(cls, data: str | bytes) -> Response:
        """Parse a response from JSON text."""
        raw = _load_object(data, "response")
        error_raw = raw.get("error")
        try:
            error = None if error_raw is None else JsonRpcError._from_wire(error_raw)
        except ValueError as exc:
            raise ValueError(f"unmarshal response: {exc}") from exc
        return cls(
            id=raw.get("id"),
            result=raw.get("result"),
            error=error,
            jsonrpc=_string_field(raw, "jsonrpc", "response"),
        )

    def has_error(self) -> bool:
        """True when the response carries an error."""
        return self.error is not None


def new_request(method: str, params: dict[str, Any] | None = None) -> Request:
    """Create a request with a fresh UUID id."""
    return Request(method=method, params=params, id=str(uuid.uuid4()))


def new_request_with_id(id: Any, method: str, params: dict[str, Any] | None = None) -> Request:
    """Create a request with the given id."""
    return Request(method=method, params=params, id=id)


def new_success_response(id: Any, result: Any) -> Response:
    """Create a successful response."""
    return Response(id=id, result=result)


def new_error_response(id: Any, code: int, message: str, data: Any = None) -> Response:
    """Create an error response."""
    return Response(id=id, error=JsonRpcError(code=int(code), message=message, data=data))


def parse_error(id: Any, message: str) -> Response:
    """Create a parse error response."""
    return new_error_response(id, ErrorCode.PARSE_ERROR, message)


def invalid_request(id: Any, message: str) -> Response:
    """Create an invalid request error response."""
    return new_error_response(id, ErrorCode.INVALID_REQUEST, message)


def method_not_found(id: Any, method: str) -> Response:
    """Create a method not found error response."""
    return new_error_response(id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")


def invalid_params(id: Any, message: str) -> Response:
    """Create an invalid params error response."""
    return new_error_response(id, ErrorCode.INVALID_PARAMS, message)


def internal_error(id: Any, message: str, data: Any = None) -> Response:
    """Create an internal error response."""
    return new_error_response(id, ErrorCode.INTERNAL_ERROR, message, data)


class UUIDGenerator:
    """Generates UUID string request ids."""

    def generate(self) -> str:
        return str(uuid.uuid4())


class IncrementingIDGenerator:
    """Generates increasing integer request ids, starting at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def generate(self) -> int:
        with self._lock:
            return next(self._counter)


class TimestampedIDGenerator:
    """Generates request ids from the current time in nanoseconds."""

    def generate(self) -> int:
        return time.time_ns()