# agentwire

Building blocks for talking to an agent CLI over a stream of JSON messages:

- **`agentwire.protocol`**: JSON-RPC 2.0 `Request` and `Response` dataclasses,
  the `ErrorCode` enum, helpers such as `new_request`, `new_success_response`,
  `method_not_found` and `internal_error`, and three id generators
  (`UUIDGenerator`, `IncrementingIDGenerator`, `TimestampedIDGenerator`).
- **`agentwire.sdk_server`**: `McpTool` and `SdkMCPServer`, an in-process MCP
  server that answers `initialize`, `tools/list` and `tools/call`.
- **`agentwire.message_parser`**: `parse_message`, `parse_content_block` and
  `parse_content_blocks`, which turn JSON into typed messages (`UserMessage`,
  `AssistantMessage`, `SystemMessage`, `ResultMessage`, `StreamEvent`) and
  content blocks (`TextBlock`, `ThinkingBlock`, `ToolUseBlock`, `ToolResultBlock`).
- **`agentwire.query`**: the asyncio `Query` router. It pairs control requests
  with their responses, answers permission, hook and MCP requests coming from
  the CLI, and hands every other message on to you.
- **`agentwire.errors`**: the exceptions the package raises.

## Installing

```
pip install agentwire
```

Python 3.10 or later is needed. There are no third-party dependencies.

## Parsing messages

```python
from agentwire.message_parser import parse_message, AssistantMessage, TextBlock
from agentwire.errors import CLIJSONDecodeError, MessageParseError

msg = parse_message(b'{"type": "assistant", "model": "m", '
                    b'"content": [{"type": "text", "text": "Hi"}]}')
assert isinstance(msg, AssistantMessage)
assert isinstance(msg.content[0], TextBlock)

try:
    parse_message(b'{"type": "unknown"}')
except MessageParseError as exc:
    print("bad message:", exc)
```

The message class is chosen by the `"type"` field. `control_request` and
`control_response` are parsed as `SystemMessage`, with their `request_id`,
`request` and `response` members filled in. Empty input, a missing or
non-string type, an unknown type or a field of the wrong kind raise
`MessageParseError`; text that is not JSON raises `CLIJSONDecodeError`, which
keeps the first 200 characters of the input in its `line` attribute. Both are
subclasses of `ValueError`. Unknown extra fields are ignored.

`parse_content_blocks` accepts JSON strings, bytes or already decoded dicts and
names the index of the first block it could not parse.

## Serving tools over MCP

```python
from agentwire.sdk_server import McpTool, SdkMCPServer

def echo(arguments):
    return {"content": [{"type": "text", "text": arguments["text"]}]}

tool = McpTool(
    name="echo",
    description="Echo back input",
    input_schema={"type": "object", "properties": {"text": {"type": "string"}},
                  "required": ["text"]},
    handler=echo,
)
server = SdkMCPServer("local", "1.0.0", [tool])
reply = server.handle_message({
    "jsonrpc": "2.0", "id": 1, "method": "tools/call",
    "params": {"name": "echo", "arguments": {"text": "hello"}},
})
```

`handle_message` returns a plain dict. Unknown methods and unknown tools give a
`-32601` error, bad params or arguments give `-32602`, and an exception raised
by a tool handler gives `-32603` with the text `tool execution failed: ...`.
A message without a string `method` raises `ValueError`. Tool results that are
dataclasses, or objects with a `to_dict()` method, are converted to JSON data.

Tools can be changed later with `add_tool` (raises `ValueError` for a duplicate
name) and `remove_tool` (raises `KeyError` for an unknown name).

`create_sdk_mcp_server(name, version, tools)` returns a `ToolServerConfig`
holding a new `SdkMCPServer`.

## Routing the control protocol

`Query` runs on asyncio over a `Transport`: subclass it and provide an async
`write(data)` that sends one JSON string, and `read_messages()` returning an
async iterator of parsed messages.

```python
from agentwire.message_parser import ResultMessage
from agentwire.query import Query, QueryOptions, PermissionResultAllow

async def can_use_tool(tool_name, tool_input, context):
    return PermissionResultAllow()

async def run(transport):
    options = QueryOptions(can_use_tool=can_use_tool)
    async with Query(transport, options, streaming=True) as query:
        await query.initialize()
        await query.set_permission_mode("acceptEdits")
        async for message in query.messages():
            print(message)
            if isinstance(message, ResultMessage):
                break
```

`async with` calls `start()` and `stop()`. `messages()` ends only once the
query is stopped, so leave the loop yourself when you have what you need.

What `Query` does with incoming messages:

- `control_response` messages complete the matching `send_control_request`
  call; an error response raises `ControlProtocolError` there.
- `control_request` messages from the CLI are answered with a success or error
  `control_response`:
  - `can_use_tool` calls `QueryOptions.can_use_tool(tool_name, input, context)`,
    which must return `PermissionResultAllow` or `PermissionResultDeny`;
  - `hook_callback` calls the hook registered under the given callback id;
  - `mcp_message` passes the message to the named MCP server;
  - `interrupt` and `set_permission_mode` are acknowledged with an empty reply.
- every other message goes to `messages()`.

Callbacks may be plain functions or coroutines.

Hooks are given as `QueryOptions.hooks`, a mapping from event name to a list of
`HookMatcher(hooks=[...], matcher="Bash")`. `initialize()` registers each
callback, sends the ids with the `initialize` request, and returns the reply.
A hook callback is called as `callback(input, tool_use_id, HookContext())` and
should return a dict (or a dataclass, or an object with `to_dict()`).

In-process MCP servers are made available with `add_mcp_server(name, server)`,
or by putting `ToolServerConfig` entries into `QueryOptions.mcp_servers` and
calling `query.configure_mcp_servers(options)`. A config whose `instance` is a
list of `McpTool` is turned into an `SdkMCPServer`; a config with no instance
raises `ValueError`.

`send_control_request(request, timeout=None)` raises `TimeoutError` when the
timeout passes, and both it and `initialize()` require `streaming=True`
(`initialize()` simply returns `None` otherwise). Pending requests fail with
`ControlProtocolError` when the query is stopped.

## What this package does not do

- It does not start the agent CLI or provide a ready-made `Transport`; you
  supply the process and the object that reads and writes its stream.
- It has no command-line program.
- `McpTool` does not check arguments against its `input_schema`; the schema is
  only reported by `tools/list`, and checking is up to the handler.