"""Routing of control-protocol traffic between a transport and application callbacks."""

from __future__ import annotations

import abc
import asyncio
import dataclasses
import inspect
import itertools
import json
import logging
import re
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from agentwire.errors import ControlProtocolError
from agentwire.message_parser import Message, SystemMessage
from agentwire.protocol import ErrorCode
from agentwire.sdk_server import McpTool, SdkMCPServer, ToolServerConfig

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_CAPACITY = 100

_CLOSED = object()


class Transport(abc.ABC):
    """A bidirectional channel to the agent process."""

    @abc.abstractmethod
    async def write(self, data: str) -> None:
        """Send one JSON document to the other side."""

    @abc.abstractmethod
    def read_messages(self) -> AsyncIterator[Message]:
        """Yield parsed messages as they arrive, ending when the stream closes."""


@dataclass
class ToolPermissionContext:
    """Information handed to a permission callback alongside the tool call."""

    suggestions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class HookContext:
    """Extra information handed to hook callbacks."""


CanUseTool = Callable[[str, dict, ToolPermissionContext], Any]
HookCallback = Callable[[Any, Optional[str], HookContext], Any]


@dataclass
class HookMatcher:
    """A set of hook callbacks, optionally limited to tools matching a pattern."""

    hooks: list[HookCallback] = field(default_factory=list)
    matcher: str | None = None


@dataclass
class PermissionResultAllow:
    """Permit the tool call, optionally with changed input or permissions."""

    updated_input: dict[str, Any] | None = None
    updated_permissions: list[Any] = field(default_factory=list)
    behavior: str = "allow"


@dataclass
class PermissionResultDeny:
    """Refuse the tool call, optionally interrupting the run."""

    message: str = ""
    interrupt: bool = False
    behavior: str = "deny"


@dataclass
class QueryOptions:
    """Callbacks and settings used by a Query."""

    can_use_tool: CanUseTool | None = None
    hooks: dict[Any, list[HookMatcher]] = field(default_factory=dict)
    mcp_servers: Any = None
    message_channel_capacity: int = DEFAULT_MESSAGE_CAPACITY


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _event_name(event: Any) -> str:
    return str(getattr(event, "value", event))


def _mcp_error(message_id: Any, code: int, text: str) -> dict[str, Any]:
    return {
        "mcp_response": {
            "jsonrpc": "2.0",
            "id": message_id,
            "error": {"code": int(code), "message": text},
        }
    }


def matches_tool_name(tool_name: str, pattern: str | None) -> bool:
    """True if the pattern is empty or is a regular expression found in tool_name."""
    if not pattern:
        return True
    try:
        regex = re.compile(pattern)
    except re.error:
        return False
    return regex.search(tool_name) is not None


def _instantiate_sdk_server(config: ToolServerConfig) -> Any:
    instance = config.instance
    if instance is None:
        raise ValueError(f"SDK MCP server {config.name} has no instance")
    if callable(getattr(instance, "handle_message", None)):
        return instance
    if isinstance(instance, (list, tuple)) and all(isinstance(t, McpTool) for t in instance):
        server = SdkMCPServer(config.name, config.version, instance)
        config.instance = server
        return server
    raise ValueError(f"unsupported SDK MCP server instance type {type(instance).__name__}")


class Query:
    """Routes messages from a transport, answering control requests and passing the rest on."""

    def __init__(
        self,
        transport: Transport,
        options: QueryOptions | None = None,
        streaming: bool = True,
    ) -> None:
        opts = options or QueryOptions()
        self._transport = transport
        self._streaming = streaming
        self._can_use_tool = opts.can_use_tool
        self._hooks: dict[Any, list[HookMatcher]] = dict(opts.hooks or {})
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=opts.message_channel_capacity)
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._request_ids = itertools.count(1)
        self._hook_ids = itertools.count(1)
        self._hook_callbacks: dict[str, HookCallback] = {}
        self._mcp_servers: dict[str, Any] = {}
        self._handler_tasks: set[asyncio.Task[Any]] = set()
        self._loop_task: asyncio.Task[Any] | None = None
        self._started = False
        self._stopped = False
        self._closed = False
        self._initialized = False
        self._initialize_result: dict[str, Any] | None = None

    async def __aenter__(self) -> Query:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def initialize(self) -> dict[str, Any] | None:
        """Send the initialize request in streaming mode and return the reply."""
        if not self._streaming:
            return None
        if self._initialized:
            return self._initialize_result

        hooks_config: dict[str, list[dict[str, Any]]] = {}
        for event, matchers in self._hooks.items():
            if not matchers:
                continue
            hooks_config[_event_name(event)] = [self._matcher_config(m) for m in matchers]

        request: dict[str, Any] = {"subtype": "initialize"}
        if hooks_config:
            request["hooks"] = hooks_config

        try:
            result = await self.send_control_request(request)
        except Exception as exc:
            logger.error("control protocol initialization failed: %s", exc)
            raise ControlProtocolError("initialization failed", cause=exc) from exc

        self._initialized = True
        self._initialize_result = result
        return result

    def _matcher_config(self, matcher: HookMatcher) -> dict[str, Any]:
        config: dict[str, Any] = {
            "hookCallbackIds": [self.register_hook_callback(cb) for cb in matcher.hooks]
        }
        if matcher.matcher is not None:
            config["matcher"] = matcher.matcher
        return config

    async def start(self) -> None:
        """Begin reading and routing messages from the transport."""
        if self._started:
            raise ControlProtocolError("query already started")
        self._started = True
        self._loop_task = asyncio.create_task(self._message_loop())

    async def stop(self) -> None:
        """Stop routing, cancel outstanding work and close the message stream."""
        if self._stopped:
            return
        self._stopped = True
        tasks = [t for t in (self._loop_task, *self._handler_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ControlProtocolError("query stopped"))
        self._pending.clear()
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def messages(self) -> AsyncIterator[Message]:
        """Yield the non-control messages until the query is stopped."""
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return
            yield item

    async def _message_loop(self) -> None:
        async for message in self._transport.read_messages():
            try:
                await self._route_message(message)
            except Exception as exc:
                logger.warning("message routing error: %s", exc)
        logger.debug("message loop stopped: transport closed")

    async def _route_message(self, message: Message) -> None:
        msg_type = getattr(message, "type", "")
        if msg_type == "control_response":
            if not isinstance(message, SystemMessage):
                raise ControlProtocolError("invalid control_response message type")
            self._handle_control_response(message)
            return
        if msg_type == "control_request":
            if not isinstance(message, SystemMessage):
                raise ControlProtocolError("invalid control_request message type")
            task = asyncio.create_task(self._handle_control_request(message))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)
            return
        await self._queue.put(message)

    def _handle_control_response(self, message: SystemMessage) -> None:
        data = message.response
        if data is None:
            raise ControlProtocolError("invalid control response format: response field is missing")
        request_id = data.get("request_id")
        if not isinstance(request_id, str):
            raise ControlProtocolError("missing request_id in control response")

        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return

        if data.get("subtype") == "error":
            error = data.get("error")
            text = error if isinstance(error, str) and error else "unknown control protocol error"
            future.set_exception(ControlProtocolError(text))
            return
        response = data.get("response")
        future.set_result(response if isinstance(response, dict) else None)

    async def _handle_control_request(self, message: SystemMessage) -> None:
        request_id = message.request_id or f"cli-request-{next(self._request_ids)}"
        data = message.request
        if data is None:
            logger.error("invalid control request format: request is missing")
            await self._send_error_response(request_id, "invalid control request format")
            return

        subtype = data.get("subtype")
        subtype = subtype if isinstance(subtype, str) else ""
        handlers = {
            "can_use_tool": self.handle_permission_request,
            "hook_callback": self.handle_hook_callback,
            "mcp_message": self.handle_mcp_message,
        }
        try:
            handler = handlers.get(subtype)
            if handler is not None:
                response = await handler(data)
            elif subtype in ("interrupt", "set_permission_mode"):
                response = {}
            else:
                raise ControlProtocolError(f"unsupported control request subtype: {subtype}")
        except Exception as exc:
            await self._send_error_response(request_id, str(exc))
            return
        await self._send_success_response(request_id, response)

    async def handle_permission_request(self, request_data: Mapping[str, Any]) -> dict[str, Any]:
        """Ask the permission callback about a tool call and build the reply."""
        if self._can_use_tool is None:
            raise ControlProtocolError("canUseTool callback is not provided")

        tool_name = request_data.get("tool_name")
        tool_input = request_data.get("input")
        suggestions = request_data.get("permission_suggestions")
        if not isinstance(tool_name, str) or not tool_name or not isinstance(tool_input, dict):
            raise ControlProtocolError("missing tool_name or input in permission request")

        context = ToolPermissionContext(
            suggestions=[s for s in suggestions if isinstance(s, dict)]
            if isinstance(suggestions, list)
            else []
        )
        result = await _resolve(self._can_use_tool(tool_name, tool_input, context))

        if isinstance(result, PermissionResultAllow):
            response: dict[str, Any] = {
                "behavior": "allow",
                "updatedInput": result.updated_input
                if result.updated_input is not None
                else tool_input,
            }
            if result.updated_permissions:
                response["updatedPermissions"] = result.updated_permissions
            return response
        if isinstance(result, PermissionResultDeny):
            response = {"behavior": "deny"}
            if result.message:
                response["message"] = result.message
            if result.interrupt:
                response["interrupt"] = True
            return response
        raise ControlProtocolError("permission callback returned invalid type")

    async def handle_hook_callback(self, request_data: Mapping[str, Any]) -> dict[str, Any] | None:
        """Run the registered hook callback named in the request."""
        callback_id = request_data.get("callback_id")
        hook_input = request_data.get("input")
        tool_use_id = request_data.get("tool_use_id")
        if not isinstance(tool_use_id, str):
            tool_use_id = None

        if not isinstance(callback_id, str) or not callback_id:
            raise ControlProtocolError("missing callback_id in hook callback request")
        callback = self._hook_callbacks.get(callback_id)
        if callback is None:
            raise ControlProtocolError(f"no hook callback found for ID: {callback_id}")

        output = await _resolve(callback(hook_input, tool_use_id, HookContext()))
        if isinstance(output, dict):
            return output
        try:
            converted = json.loads(json.dumps(output, default=_jsonable))
        except (TypeError, ValueError):
            raise ControlProtocolError("hook callback returned non-serializable type") from None
        if converted is not None and not isinstance(converted, dict):
            raise ControlProtocolError("hook callback returned non-serializable type")
        return converted

    async def handle_mcp_message(self, request_data: Mapping[str, Any]) -> dict[str, Any]:
        """Pass an MCP message to the named server and wrap its reply."""
        server_name = request_data.get("server_name")
        message = request_data.get("message")
        if not isinstance(server_name, str) or not server_name or not isinstance(message, dict):
            raise ControlProtocolError("missing server_name or message in MCP request")

        server = self._mcp_servers.get(server_name)
        if server is None:
            return _mcp_error(
                message.get("id"), ErrorCode.METHOD_NOT_FOUND, f"Server '{server_name}' not found"
            )
        try:
            mcp_response = await _resolve(server.handle_message(message))
        except Exception as exc:
            return _mcp_error(message.get("id"), ErrorCode.INTERNAL_ERROR, str(exc))
        return {"mcp_response": mcp_response}

    async def send_control_request(
        self, request: Mapping[str, Any], timeout: float | None = None
    ) -> dict[str, Any] | None:
        """Send a control request and wait for the matching response."""
        if not self._streaming:
            raise ControlProtocolError("control requests require streaming mode")

        request_id = f"req_{next(self._request_ids)}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            try:
                payload = json.dumps(
                    {"type": "control_request", "request_id": request_id, "request": dict(request)}
                )
            except (TypeError, ValueError) as exc:
                raise ControlProtocolError("failed to marshal control request", cause=exc) from exc
            try:
                await self._transport.write(payload)
            except Exception as exc:
                raise ControlProtocolError("failed to send control request", cause=exc) from exc
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(f"control request {request_id} timed out") from exc
        finally:
            self._pending.pop(request_id, None)

    async def set_permission_mode(self, mode: str) -> None:
        """Ask the other side to switch to the given permission mode."""
        try:
            await self.send_control_request({"subtype": "set_permission_mode", "mode": mode})
        except Exception as exc:
            raise ControlProtocolError("failed to set permission mode", cause=exc) from exc
        logger.debug("permission mode set to %s", mode)

    async def _send_success_response(self, request_id: str, response: Any) -> None:
        await self._write_response(
            {"subtype": "success", "request_id": request_id, "response": response}
        )

    async def _send_error_response(self, request_id: str, error: str) -> None:
        await self._write_response({"subtype": "error", "request_id": request_id, "error": error})

    async def _write_response(self, body: dict[str, Any]) -> None:
        try:
            payload = json.dumps({"type": "control_response", "response": body}, default=_jsonable)
        except (TypeError, ValueError) as exc:
            logger.error("failed to marshal control response: %s", exc)
            return
        try:
            await self._transport.write(payload)
        except Exception as exc:
            logger.error("failed to write control response: %s", exc)

    def register_hook_callback(self, callback: HookCallback) -> str:
        """Store a hook callback and return the id it is known by."""
        callback_id = f"hook_{next(self._hook_ids)}"
        self._hook_callbacks[callback_id] = callback
        return callback_id

    def add_mcp_server(self, name: str, server: Any) -> None:
        """Make a server available to mcp_message requests under the given name."""
        self._mcp_servers[name] = server

    def configure_mcp_servers(self, options: QueryOptions | None) -> None:
        """Register the in-process servers found in the options."""
        if options is None or not isinstance(options.mcp_servers, dict):
            return
        servers: Iterable[tuple[str, Any]] = options.mcp_servers.items()
        for name, config in servers:
            if not isinstance(config, ToolServerConfig):
                continue
            if config.type not in ("", "sdk"):
                continue
            try:
                server = _instantiate_sdk_server(config)
            except ValueError as exc:
                raise ValueError(f"configure MCP server {name}: {exc}") from exc
            self.add_mcp_server(name, server)