from __future__ import annotations


class RelayGraphError(Exception):
    pass


class ProviderError(RelayGraphError):
    """The model provider call failed. No partial message is returned."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class StreamEventError(ProviderError):
    """The provider stream carried an ``error`` event."""


class ToolNameError(RelayGraphError, ValueError):
    pass


class ToolServerNotFoundError(RelayGraphError, LookupError):
    pass


class ToolExecutionError(RelayGraphError):
    pass
