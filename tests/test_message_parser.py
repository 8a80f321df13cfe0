import pytest

from agentwire.errors import CLIJSONDecodeError, MessageParseError
from agentwire.message_parser import (
    AssistantMessage,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    extract_type,
    parse_content_block,
    parse_content_blocks,
    parse_message,
    truncate_string,
)

MODEL = "claude-sonnet-4-5-20250929"

USER_SIMPLE = b'{"type": "user", "content": "Hello Claude"}'
USER_COMPLEX = b"""{
    "type": "user",
    "content": [
        {"type": "text", "text": "Here is the tool result:"},
        {"type": "tool_result", "tool_use_id": "toolu_123",
         "content": "Operation completed successfully"}
    ],
    "parent_tool_use_id": "parent_456"
}"""
USER_ONLY_TEXT = b'{"type": "user", "content": "Simple text content"}'
USER_CONTENT_BLOCKS = b"""{
    "type": "user",
    "content": [{"type": "text", "text": "Part 1"}, {"type": "text", "text": "Part 2"}]
}"""
USER_EXTRA_FIELDS = b"""{
    "type": "user", "content": "Hello",
    "future_field": "should be ignored",
    "another_unknown_field": {"nested": "data"}
}"""

ASSISTANT_TEXT = (
    b'{"type": "assistant", "content": [{"type": "text", '
    b'"text": "Hi there! How can I help you today?"}], '
    b'"model": "claude-sonnet-4-5-20250929"}'
)
ASSISTANT_TOOL_USE = b"""{
    "type": "assistant",
    "content": [
        {"type": "text", "text": "I'll calculate that for you."},
        {"type": "tool_use", "id": "toolu_calculator_1", "name": "calculator",
         "input": {"expression": "2 + 2"}}
    ],
    "model": "claude-sonnet-4-5-20250929"
}"""
ASSISTANT_THINKING = b"""{
    "type": "assistant",
    "content": [
        {"type": "thinking", "thinking": "Let me analyze this problem step by step...",
         "signature": "sig_abc123"},
        {"type": "text", "text": "Based on my analysis..."}
    ],
    "model": "claude-sonnet-4-5-20250929",
    "parent_tool_use_id": "parent_tool_xyz"
}"""
ASSISTANT_MIXED = b"""{
    "type": "assistant",
    "content": [
        {"type": "thinking", "thinking": "I need to use the bash tool", "signature": "sig_def456"},
        {"type": "text", "text": "Running command..."},
        {"type": "tool_use", "id": "toolu_bash_1", "name": "bash", "input": {"command": "ls -la"}}
    ],
    "model": "claude-sonnet-4-5-20250929"
}"""
ASSISTANT_ALL_BLOCKS = b"""{
    "type": "assistant",
    "content": [
        {"type": "thinking", "thinking": "Analyzing request", "signature": "sig_all"},
        {"type": "text", "text": "I'll help with that"},
        {"type": "tool_use", "id": "toolu_all_1", "name": "bash", "input": {"command": "echo test"}}
    ],
    "model": "claude-sonnet-4-5-20250929"
}"""
ASSISTANT_EXTRA_FIELDS = b"""{
    "type": "assistant",
    "content": [{"type": "text", "text": "Response", "extra_block_field": "ignored"}],
    "model": "claude-sonnet-4-5-20250929",
    "new_api_feature": true
}"""

SYSTEM_METADATA = b"""{
    "type": "system", "subtype": "metadata",
    "data": {"session_id": "sess_abc123", "version": "1.0.0"}
}"""
SYSTEM_WARNING = b"""{
    "type": "system", "subtype": "warning",
    "data": {"message": "API rate limit approaching", "current_usage": 80, "limit": 100}
}"""

RESULT_SUCCESS = b"""{
    "type": "result", "subtype": "success", "duration_ms": 1234, "duration_api_ms": 987,
    "is_error": false, "num_turns": 3, "session_id": "sess_result_123",
    "total_cost_usd": 0.0045,
    "usage": {"input_tokens": 150, "output_tokens": 75,
              "cache_creation_input_tokens": 0, "cache_read_input_tokens": 0},
    "result": "Task completed successfully"
}"""
RESULT_ERROR = b"""{
    "type": "result", "subtype": "error", "duration_ms": 567, "duration_api_ms": 234,
    "is_error": true, "num_turns": 1, "session_id": "sess_error_456",
    "result": "An error occurred during processing"
}"""

STREAM_MESSAGE_START = b"""{
    "type": "stream_event", "uuid": "evt_uuid_123", "session_id": "sess_stream_789",
    "event": {"type": "message_start", "message": {"id": "msg_abc", "type": "message",
              "role": "assistant", "content": [], "model": "claude-sonnet-4-5-20250929"}}
}"""
STREAM_CONTENT_BLOCK_DELTA = b"""{
    "type": "stream_event", "uuid": "evt_uuid_456", "session_id": "sess_stream_789",
    "event": {"type": "content_block_delta", "index": 0,
              "delta": {"type": "text_delta", "text": "Hello"}},
    "parent_tool_use_id": "parent_stream_xyz"
}"""
STREAM_MESSAGE_DELTA = b"""{
    "type": "stream_event", "uuid": "evt_uuid_789", "session_id": "sess_stream_789",
    "event": {"type": "message_delta",
              "delta": {"stop_reason": "end_turn", "stop_sequence": null},
              "usage": {"output_tokens": 42}}
}"""

TEXT_BLOCK = b'{"type": "text", "text": "This is a text block"}'
THINKING_BLOCK = (
    b'{"type": "thinking", "thinking": "Let me think about this...", '
    b'"signature": "sig_thinking_123"}'
)
TOOL_USE_BLOCK = (
    b'{"type": "tool_use", "id": "toolu_block_123", "name": "calculator", '
    b'"input": {"operation": "add", "a": 10, "b": 20}}'
)
TOOL_RESULT_BLOCK = (
    b'{"type": "tool_result", "tool_use_id": "toolu_result_456", "content": "The result is 30"}'
)
TOOL_RESULT_BLOCK_WITH_ERROR = (
    b'{"type": "tool_result", "tool_use_id": "toolu_error_789", '
    b'"content": "Command failed with exit code 1", "is_error": true}'
)
TOOL_RESULT_BLOCK_COMPLEX = (
    b'{"type": "tool_result", "tool_use_id": "toolu_complex_999", '
    b'"content": [{"type": "text", "text": "Multi-part result"}], "is_error": false}'
)

INVALID_MALFORMED = b'{\n "type": "user",\n "content": "Missing closing brace"'
INVALID_MISSING_TYPE = b'{"content": "No type field"}'
INVALID_UNKNOWN_TYPE = b'{"type": "unknown_message_type", "data": {}}'
INVALID_EMPTY = b""
INVALID_NULL_TYPE = b'{"type": null, "content": "Type is null"}'
INVALID_NUMBER_TYPE = b'{"type": 123, "content": "Type is a number"}'

BLOCK_MISSING_TYPE = b'{"text": "No type field"}'
BLOCK_UNKNOWN_TYPE = b'{"type": "unknown_block_type", "data": "something"}'
BLOCK_MALFORMED = b'{"type": "text", "text": "Unclosed'

MULTIPLE_BLOCKS = [
    '{"type": "text", "text": "First block"}',
    '{"type": "thinking", "thinking": "Second block", "signature": "sig_2"}',
    '{"type": "tool_use", "id": "tool_3", "name": "test", "input": {}}',
]


def test_user_simple_string_content():
    msg = parse_message(USER_SIMPLE)
    assert isinstance(msg, UserMessage)
    assert msg.type == "user"
    assert msg.content == "Hello Claude"


def test_user_content_blocks_with_tool_result():
    msg = parse_message(USER_COMPLEX)
    assert isinstance(msg, UserMessage)
    assert isinstance(msg.content, list)
    assert len(msg.content) == 2
    assert isinstance(msg.content[1], ToolResultBlock)
    assert msg.parent_tool_use_id == "parent_456"


def test_user_only_text():
    msg = parse_message(USER_ONLY_TEXT)
    assert isinstance(msg, UserMessage)
    assert msg.content == "Simple text content"


def test_user_content_blocks_array():
    msg = parse_message(USER_CONTENT_BLOCKS)
    assert isinstance(msg, UserMessage)
    assert [block.text for block in msg.content] == ["Part 1", "Part 2"]


def test_user_extra_fields_ignored():
    msg = parse_message(USER_EXTRA_FIELDS)
    assert isinstance(msg, UserMessage)
    assert msg.type == "user"
    assert msg.content == "Hello"


def test_assistant_simple_text():
    msg = parse_message(ASSISTANT_TEXT)
    assert isinstance(msg, AssistantMessage)
    assert msg.type == "assistant"
    assert len(msg.content) == 1
    assert isinstance(msg.content[0], TextBlock)
    assert msg.content[0].text == "Hi there! How can I help you today?"
    assert msg.model == MODEL


def test_assistant_tool_use():
    msg = parse_message(ASSISTANT_TOOL_USE)
    assert isinstance(msg, AssistantMessage)
    assert len(msg.content) == 2
    tool_use = msg.content[1]
    assert isinstance(tool_use, ToolUseBlock)
    assert tool_use.name == "calculator"
    assert tool_use.input == {"expression": "2 + 2"}


def test_assistant_thinking():
    msg = parse_message(ASSISTANT_THINKING)
    assert isinstance(msg, AssistantMessage)
    assert isinstance(msg.content[0], ThinkingBlock)
    assert "step by step" in msg.content[0].thinking
    assert msg.parent_tool_use_id == "parent_tool_xyz"


@pytest.mark.parametrize("payload", [ASSISTANT_MIXED, ASSISTANT_ALL_BLOCKS])
def test_assistant_three_blocks(payload):
    msg = parse_message(payload)
    assert isinstance(msg, AssistantMessage)
    assert [type(b) for b in msg.content] == [ThinkingBlock, TextBlock, ToolUseBlock]


def test_assistant_extra_fields_ignored():
    msg = parse_message(ASSISTANT_EXTRA_FIELDS)
    assert isinstance(msg, AssistantMessage)
    assert msg.type == "assistant"
    assert msg.content[0].text == "Response"


@pytest.mark.parametrize(
    ("payload", "subtype"),
    [(SYSTEM_METADATA, "metadata"), (SYSTEM_WARNING, "warning")],
)
def test_system_messages(payload, subtype):
    msg = parse_message(payload)
    assert isinstance(msg, SystemMessage)
    assert msg.subtype == subtype


def test_system_metadata_data():
    msg = parse_message(SYSTEM_METADATA)
    assert msg.data == {"session_id": "sess_abc123", "version": "1.0.0"}


def test_result_success():
    msg = parse_message(RESULT_SUCCESS)
    assert isinstance(msg, ResultMessage)
    assert msg.is_error is False
    assert msg.usage is not None
    assert msg.usage["input_tokens"] == 150
    assert msg.duration_ms == 1234
    assert msg.num_turns == 3
    assert msg.total_cost_usd == pytest.approx(0.0045)
    assert msg.result == "Task completed successfully"


def test_result_error():
    msg = parse_message(RESULT_ERROR)
    assert isinstance(msg, ResultMessage)
    assert msg.is_error is True
    assert msg.usage is None
    assert msg.session_id == "sess_error_456"


@pytest.mark.parametrize(
    ("payload", "event_type"),
    [
        (STREAM_MESSAGE_START, "message_start"),
        (STREAM_CONTENT_BLOCK_DELTA, "content_block_delta"),
        (STREAM_MESSAGE_DELTA, "message_delta"),
    ],
)
def test_stream_events(payload, event_type):
    msg = parse_message(payload)
    assert isinstance(msg, StreamEvent)
    assert msg.event is not None
    assert msg.event["type"] == event_type


def test_stream_event_parent_tool_use_id():
    msg = parse_message(STREAM_CONTENT_BLOCK_DELTA)
    assert msg.parent_tool_use_id == "parent_stream_xyz"
    assert msg.uuid == "evt_uuid_456"


@pytest.mark.parametrize(
    "payload",
    [
        INVALID_MALFORMED,
        INVALID_MISSING_TYPE,
        INVALID_UNKNOWN_TYPE,
        INVALID_EMPTY,
        INVALID_NULL_TYPE,
        INVALID_NUMBER_TYPE,
    ],
)
def test_invalid_messages(payload):
    with pytest.raises((MessageParseError, CLIJSONDecodeError)):
        parse_message(payload)


def test_malformed_message_is_decode_error_with_line():
    with pytest.raises(CLIJSONDecodeError) as info:
        parse_message(INVALID_MALFORMED)
    assert "Missing closing brace" in info.value.line


def test_decode_error_line_is_truncated():
    payload = '{"type": "user", "content": "' + "x" * 500
    with pytest.raises(CLIJSONDecodeError) as info:
        parse_message(payload)
    assert info.value.line == payload[:200] + "..."


def test_unknown_message_type_is_recorded():
    with pytest.raises(MessageParseError) as info:
        parse_message(INVALID_UNKNOWN_TYPE)
    assert info.value.message_type == "unknown_message_type"


def test_control_response_parses_as_system_message():
    payload = (
        '{"type": "control_response", "response": '
        '{"subtype": "success", "request_id": "req_1", "response": {}}}'
    )
    msg = parse_message(payload)
    assert isinstance(msg, SystemMessage)
    assert msg.type == "control_response"
    assert msg.response["request_id"] == "req_1"


def test_control_request_keeps_request_id():
    payload = '{"type": "control_request", "request_id": "r9", "request": {"subtype": "interrupt"}}'
    msg = parse_message(payload)
    assert msg.type == "control_request"
    assert msg.request_id == "r9"
    assert msg.request == {"subtype": "interrupt"}


def test_wrong_field_type_is_rejected():
    with pytest.raises(MessageParseError):
        parse_message('{"type": "assistant", "content": [{"type": "text", "text": 5}]}')


def test_parse_text_block():
    block = parse_content_block(TEXT_BLOCK)
    assert isinstance(block, TextBlock)
    assert block.type == "text"
    assert block.text == "This is a text block"


def test_parse_tool_use_block():
    block = parse_content_block(TOOL_USE_BLOCK)
    assert isinstance(block, ToolUseBlock)
    assert block.type == "tool_use"
    assert block.name == "calculator"
    assert block.id == "toolu_block_123"


@pytest.mark.parametrize(
    ("payload", "is_error"),
    [
        (TOOL_RESULT_BLOCK, None),
        (TOOL_RESULT_BLOCK_WITH_ERROR, True),
        (TOOL_RESULT_BLOCK_COMPLEX, False),
    ],
)
def test_parse_tool_result_block(payload, is_error):
    block = parse_content_block(payload)
    assert isinstance(block, ToolResultBlock)
    assert block.type == "tool_result"
    assert block.is_error is is_error


def test_tool_result_complex_content_kept_raw():
    block = parse_content_block(TOOL_RESULT_BLOCK_COMPLEX)
    assert block.content == [{"type": "text", "text": "Multi-part result"}]


def test_parse_thinking_block():
    block = parse_content_block(THINKING_BLOCK)
    assert isinstance(block, ThinkingBlock)
    assert block.type == "thinking"
    assert "think about this" in block.thinking


def test_parse_block_from_mapping():
    block = parse_content_block({"type": "text", "text": "mapped"})
    assert block == TextBlock(text="mapped")


@pytest.mark.parametrize(
    "payload", [b"", BLOCK_MISSING_TYPE, BLOCK_UNKNOWN_TYPE, BLOCK_MALFORMED]
)
def test_invalid_blocks(payload):
    with pytest.raises((MessageParseError, CLIJSONDecodeError)):
        parse_content_block(payload)


def test_parse_multiple_blocks():
    blocks = parse_content_blocks(MULTIPLE_BLOCKS)
    assert len(blocks) == 3
    assert isinstance(blocks[0], TextBlock)
    assert isinstance(blocks[1], ThinkingBlock)
    assert isinstance(blocks[2], ToolUseBlock)


def test_parse_empty_blocks():
    assert parse_content_blocks([]) == []


def test_parse_blocks_reports_index():
    raw_blocks = [
        '{"type": "text", "text": "Valid"}',
        '{"type": "invalid_type"}',
        '{"type": "text", "text": "Also valid"}',
    ]
    with pytest.raises(MessageParseError) as info:
        parse_content_blocks(raw_blocks)
    assert "index 1" in str(info.value)


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ('{"type": "user", "content": "test"}', "user"),
        ('{"type": "assistant", "content": []}', "assistant"),
    ],
)
def test_extract_type_valid(payload, expected):
    assert extract_type(payload) == expected


@pytest.mark.parametrize(
    "payload",
    ['{"content": "test"}', "{invalid", '{"type": 123}', '{"type": null}'],
)
def test_extract_type_errors(payload):
    with pytest.raises(MessageParseError):
        extract_type(payload)


@pytest.mark.parametrize(
    ("text", "max_len", "expected"),
    [
        ("short", 10, "short"),
        ("exact", 5, "exact"),
        ("this is a very long string", 10, "this is a ..."),
        ("", 10, ""),
    ],
)
def test_truncate_string(text, max_len, expected):
    assert truncate_string(text, max_len) == expected