"""An in-process MCP server that runs registered tools."""

from __future__ import annotations

import dataclasses
import json
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from agentwire.protocol import (
    ErrorCode,
    Response,
    new_error_response,
    new_success_response,
)

PROTOCOL_VERSION = "0.1.0"


def _default_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass
class McpTool:
    """A tool that an MCP server can list and call."""

    name: str
    description: str
    handler: Callable[[dict[str, Any]], Any]
    input_schema: dict[str, Any] = field(default_factory=_default_schema)

    def execute(self, arguments: dict[str, Any]) -> Any:
        """Run the tool on the given arguments."""
        return self.handler(arguments)


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def response_to_dict(response: Response) -> dict[str, Any]:
    """Convert a response to plain JSON data, normalising the result."""
    out: dict[str, Any] = {"jsonrpc": response.jsonrpc, "id": response.id}
    if response.error is not None:
        out["error"] = response.error.to_dict()
    elif response.result is not None:
        try:
            out["result"] = json.loads(json.dumps(response.result, default=_jsonable))
        except (TypeError, ValueError):
            out["result"] = response.result
    return out


class SdkMCPServer:
    """Handles MCP JSON-RPC messages and routes tool calls to registered tools."""

    def __init__(self, name: str, version: str, tools: Iterable[McpTool] | None = None) -> None:
        self._name = name
        self._version = version
        self._lock = threading.RLock()
        self._tools: dict[str, McpTool] = {}
        for tool in tools or ():
            self._tools[tool.name] = tool

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def tools(self) -> list[McpTool]:
        """The registered tools, in registration order."""
        with self._lock:
            return list(self._tools.values())

    def add_tool(self, tool: McpTool) -> None:
        """Register a tool; raises ValueError if the name is taken."""
        with self._lock:
            if tool.name in self._tools:
                raise ValueError(f"tool already exists: {tool.name}")
            self._tools[tool.name] = tool

    def remove_tool(self, name: str) -> None:
        """Unregister a tool; raises KeyError if it is unknown."""
        with self._lock:
            if name not in self._tools:
                raise KeyError(f"tool not found: {name}")
            del self._tools[name]

    def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Process one MCP message and return the response as a dict."""
        method = message.get("method")
        if not isinstance(method, str):
            raise ValueError("missing or invalid method field")

        handlers = {
            "initialize": self._handle_initialize,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
        }
        handler = handlers.get(method)
        if handler is None:
            return response_to_dict(
                new_error_response(
                    message.get("id"), ErrorCode.METHOD_NOT_FOUND, f"method not found: {method}"
                )
            )
        return response_to_dict(handler(message))

    def _handle_initialize(self, message: dict[str, Any]) -> Response:
        result = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self._name, "version": self._version},
        }
        return new_success_response(message.get("id"), result)

    def _handle_tools_list(self, message: dict[str, Any]) -> Response:
        listing = [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.input_schema,
            }
            for tool in self.tools
        ]
        return new_success_response(message.get("id"), {"tools": listing})

    def _handle_tools_call(self, message: dict[str, Any]) -> Response:
        msg_id = message.get("id")

        params = message.get("params")
        if not isinstance(params, dict):
            return new_error_response(msg_id, ErrorCode.INVALID_PARAMS, "missing or invalid params")

        name = params.get("name")
        if not isinstance(name, str):
            return new_error_response(
                msg_id, ErrorCode.INVALID_PARAMS, "missing or invalid tool name"
            )

        with self._lock:
            tool = self._tools.get(name)
        if tool is None:
            return new_error_response(
                msg_id, ErrorCode.METHOD_NOT_FOUND, f"tool not found: {name}"
            )

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            return new_error_response(
                msg_id, ErrorCode.INVALID_PARAMS, "missing or invalid arguments"
            )

        try:
            result = tool.execute(arguments)
        except Exception as exc:  # noqa: BLE001 - reported to the client
            return new_error_response(
                msg_id, ErrorCode.INTERNAL_ERROR, f"tool execution failed: {exc}"
            )
        return new_success_response(msg_id, result)


@dataclass
class ToolServerConfig:
    """Configuration entry for an in-process MCP server."""

    name: str
    version: str = ""
    instance: Any = None
    type: str = "sdk"


def create_sdk_mcp_server(
    name: str, version: str, tools: Iterable[McpTool] | None = None
) -> ToolServerConfig:
    """Build a server configuration holding a new SdkMCPServer."""
    return ToolServerConfig(
        name=name,
        version=version,
        instance=SdkMCPServer(name, version, tools),
    )