"""JSON-RPC types, an in-process MCP tool server, a message parser and a control-protocol router for agent CLIs."""

__version__ = "0.1.0"

__all__ = ["errors", "message_parser", "protocol", "query", "sdk_server"]