"""Exception types raised by the agentwire package."""

from __future__ import annotations


class AgentSDKError(Exception):
    """Base class for all errors raised by the package."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        """The underlying error, if one was recorded."""
        return self.__cause__

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}: {self.__cause__}"
        return self.message


class MessageParseError(AgentSDKError, ValueError):
    """A message or content block could not be turned into a typed value."""

    def __init__(
        self,
        message: str,
        message_type: str = "",
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.message_type = message_type


class CLIJSONDecodeError(AgentSDKError, ValueError):
    """A line of output was not valid JSON."""

    def __init__(self, message: str, line: str = "", *, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.line = line


class ControlProtocolError(AgentSDKError):
    """The control protocol was violated or a control request failed."""