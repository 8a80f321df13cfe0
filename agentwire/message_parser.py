"""Typed messages and content blocks, and the parser that builds them from JSON."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from agentwire.errors import CLIJSONDecodeError, MessageParseError

_LINE_LIMIT = 200


def truncate_string(text: str, max_len: int) -> str:
    """Cut text to max_len characters, adding "..." when something was cut."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def _check(raw: Mapping[str, Any], key: str, kinds: tuple[type, ...], default: Any, where: str) -> Any:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) and bool not in kinds:
        ok = False
    else:
        ok = isinstance(value, kinds)
    if not ok:
        raise MessageParseError(f"{where}: field {key!r} has an invalid type", where)
    return value


_STR = (str,)
_INT = (int,)
_NUM = (int, float)
_BOOL = (bool,)
_DICT = (dict,)
_LIST = (list,)


@dataclass
class TextBlock:
    """Plain text content."""

    text: str
    type: str = "text"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> TextBlock:
        return cls(text=_check(raw, "text", _STR, "", "text"))


@dataclass
class ThinkingBlock:
    """The model's reasoning, with its signature."""

    thinking: str
    signature: str = ""
    type: str = "thinking"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> ThinkingBlock:
        return cls(
            thinking=_check(raw, "thinking", _STR, "", "thinking"),
            signature=_check(raw, "signature", _STR, "", "thinking"),
        )


@dataclass
class ToolUseBlock:
    """A request from the model to run a tool."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = "tool_use"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> ToolUseBlock:
        return cls(
            id=_check(raw, "id", _STR, "", "tool_use"),
            name=_check(raw, "name", _STR, "", "tool_use"),
            input=_check(raw, "input", _DICT, {}, "tool_use"),
        )


@dataclass
class ToolResultBlock:
    """The outcome of a tool run; content is text or a list of raw blocks."""

    tool_use_id: str
    content: Any = None
    is_error: bool | None = None
    type: str = "tool_result"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> ToolResultBlock:
        return cls(
            tool_use_id=_check(raw, "tool_use_id", _STR, "", "tool_result"),
            content=raw.get("content"),
            is_error=_check(raw, "is_error", _BOOL, None, "tool_result"),
        )


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock]

_BLOCK_TYPES: dict[str, Any] = {
    "text": TextBlock,
    "thinking": ThinkingBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


def _block_from_dict(raw: Any) -> ContentBlock:
    if not isinstance(raw, dict):
        raise MessageParseError("content block must be a JSON object")
    block_type = raw.get("type")
    if not isinstance(block_type, str):
        raise MessageParseError("missing or invalid type field in content block")
    block_cls = _BLOCK_TYPES.get(block_type)
    if block_cls is None:
        raise MessageParseError(f"unknown content block type: {block_type}", block_type)
    return block_cls._from_dict(raw)


def _blocks_from_list(items: Iterable[Any]) -> list[ContentBlock]:
    blocks = []
    for index, item in enumerate(items):
        try:
            blocks.append(_block_from_dict(item))
        except MessageParseError as exc:
            raise MessageParseError(
                f"failed to parse content block at index {index}: {exc}",
                exc.message_type,
            ) from exc
    return blocks


@dataclass
class UserMessage:
    """A user turn; content is a string or a list of blocks."""

    content: str | list[ContentBlock]
    parent_tool_use_id: str | None = None
    type: str = "user"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> UserMessage:
        content = raw.get("content")
        if content is None:
            content = ""
        elif isinstance(content, list):
            content = _blocks_from_list(content)
        elif not isinstance(content, str):
            raise MessageParseError("user: content must be a string or a list", "user")
        return cls(
            content=content,
            parent_tool_use_id=_check(raw, "parent_tool_use_id", _STR, None, "user"),
        )


@dataclass
class AssistantMessage:
    """An assistant turn made of content blocks."""

    content: list[ContentBlock]
    model: str = ""
    parent_tool_use_id: str | None = None
    type: str = "assistant"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> AssistantMessage:
        return cls(
            content=_blocks_from_list(_check(raw, "content", _LIST, [], "assistant")),
            model=_check(raw, "model", _STR, "", "assistant"),
            parent_tool_use_id=_check(raw, "parent_tool_use_id", _STR, None, "assistant"),
        )


@dataclass
class SystemMessage:
    """A system notice, or a control request or response of the control protocol."""

    subtype: str = ""
    data: dict[str, Any] | None = None
    request_id: str = ""
    request: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    type: str = "system"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> SystemMessage:
        msg_type = raw["type"]
        return cls(
            subtype=_check(raw, "subtype", _STR, "", msg_type),
            data=_check(raw, "data", _DICT, None, msg_type),
            request_id=_check(raw, "request_id", _STR, "", msg_type),
            request=_check(raw, "request", _DICT, None, msg_type),
            response=_check(raw, "response", _DICT, None, msg_type),
            type=msg_type,
        )


@dataclass
class ResultMessage:
    """The final summary of a conversation run."""

    subtype: str = ""
    duration_ms: int = 0
    duration_api_ms: int = 0
    is_error: bool = False
    num_turns: int = 0
    session_id: str = ""
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    result: str | None = None
    type: str = "result"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> ResultMessage:
        cost = _check(raw, "total_cost_usd", _NUM, None, "result")
        return cls(
            subtype=_check(raw, "subtype", _STR, "", "result"),
            duration_ms=_check(raw, "duration_ms", _INT, 0, "result"),
            duration_api_ms=_check(raw, "duration_api_ms", _INT, 0, "result"),
            is_error=_check(raw, "is_error", _BOOL, False, "result"),
            num_turns=_check(raw, "num_turns", _INT, 0, "result"),
            session_id=_check(raw, "session_id", _STR, "", "result"),
            total_cost_usd=None if cost is None else float(cost),
            usage=_check(raw, "usage", _DICT, None, "result"),
            result=_check(raw, "result", _STR, None, "result"),
        )


@dataclass
class StreamEvent:
    """A partial streaming update wrapping a raw API event."""

    uuid: str = ""
    session_id: str = ""
    event: dict[str, Any] | None = None
    parent_tool_use_id: str | None = None
    type: str = "stream_event"

    @classmethod
    def _from_dict(cls, raw: Mapping[str, Any]) -> StreamEvent:
        return cls(
            uuid=_check(raw, "uuid", _STR, "", "stream_event"),
            session_id=_check(raw, "session_id", _STR, "", "stream_event"),
            event=_check(raw, "event", _DICT, None, "stream_event"),
            parent_tool_use_id=_check(raw, "parent_tool_use_id", _STR, None, "stream_event"),
        )


Message = Union[UserMessage, AssistantMessage, SystemMessage, ResultMessage, StreamEvent]

_MESSAGE_TYPES: dict[str, Any] = {
    "user": UserMessage,
    "assistant": AssistantMessage,
    "system": SystemMessage,
    "control_request": SystemMessage,
    "control_response": SystemMessage,
    "result": ResultMessage,
    "stream_event": StreamEvent,
}


def _decode(data: str | bytes | bytearray, what: str) -> Any:
    try:
        return json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        text = data.decode("utf-8", "replace") if isinstance(data, (bytes, bytearray)) else data
        raise CLIJSONDecodeError(
            f"failed to decode {what}", truncate_string(text, _LINE_LIMIT), cause=exc
        ) from exc


def parse_message(data: str | bytes) -> Message:
    """Parse one JSON message into its typed form, chosen by its "type" field."""
    if not data:
        raise MessageParseError("cannot parse empty message data")
    raw = _decode(data, "message")
    if not isinstance(raw, dict):
        raise MessageParseError("message must be a JSON object")
    msg_type = raw.get("type")
    if not isinstance(msg_type, str):
        raise MessageParseError("missing or invalid type field in message")
    msg_cls = _MESSAGE_TYPES.get(msg_type)
    if msg_cls is None:
        raise MessageParseError(f"unknown message type: {msg_type}", msg_type)
    return msg_cls._from_dict(raw)


def parse_content_block(data: str | bytes | Mapping[str, Any]) -> ContentBlock:
    """Parse a single content block from JSON text or an already decoded object."""
    if isinstance(data, Mapping):
        return _block_from_dict(dict(data))
    if not data:
        raise MessageParseError("cannot parse empty content block data")
    return _block_from_dict(_decode(data, "content block"))


def parse_content_blocks(blocks: Iterable[str | bytes | Mapping[str, Any]]) -> list[ContentBlock]:
    """Parse several content blocks, reporting the index of the first bad one."""
    parsed = []
    for index, block in enumerate(blocks):
        try:
            parsed.append(parse_content_block(block))
        except (MessageParseError, CLIJSONDecodeError) as exc:
            raise MessageParseError(
                f"failed to parse content block at index {index}: {exc}",
                getattr(exc, "message_type", ""),
            ) from exc
    return parsed


def extract_type(data: str | bytes) -> str:
    """Return the string "type" field of a JSON object."""
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MessageParseError("failed to unmarshal JSON for type extraction", cause=exc) from exc
    if not isinstance(raw, dict):
        raise MessageParseError("failed to unmarshal JSON for type extraction: not an object")
    if "type" not in raw:
        raise MessageParseError("missing type field")
    type_value = raw["type"]
    if not isinstance(type_value, str):
        raise MessageParseError("type field is not a string")
    return type_value