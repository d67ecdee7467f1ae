from __future__ import annotations


class HistorianError(RuntimeError):
    pass


class ConfigurationError(HistorianError):
    """Server, system or database name does not resolve at connect time."""


class HistorianConnectionError(HistorianError):
    """Connect or authenticate failed at the transport level."""


class NotFoundError(HistorianError):
    pass


class InvalidHandleError(HistorianError):
    """A TagHandle was used after the connection that produced it went away."""


class TransportError(HistorianError):
    def __init__(self, *, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Historian transport error {status_code}: {detail}")
