from __future__ import annotations


class DataSourceError(RuntimeError):
    pass


class NotAvailableError(DataSourceError):
    pass


class RelayExhaustedError(NotAvailableError):
    pass


class ParseError(DataSourceError):
    pass


class RemoteError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class RemoteConflictError(RemoteError):
    """The remote document changed since its version token was read."""


class ConfigError(RuntimeError):
    pass
