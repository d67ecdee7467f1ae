from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from historian_query.core.config import Settings
from historian_query.core.errors import ConfigurationError, HistorianConnectionError, TransportError
from historian_query.transports.base import Credential, HistorianTransport


class ConnectionManager:
    def __init__(
        self,
        *,
        transport: HistorianTransport,
        server_name: str,
        database_name: str,
        credential: Credential | None = None,
    ):
        self._transport = transport
        self._server_name = server_name
        self._database_name = database_name
        self._credential = credential
        self._logger = logging.getLogger("historian_query.connection")
        self._server: Any | None = None
        self._system: Any | None = None
        self._database: Any | None = None
        self._generation = 0
        self._lock = Lock()

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: HistorianTransport) -> "ConnectionManager":
        return cls(
            transport=transport,
            server_name=settings.historian_server_name,
            database_name=settings.historian_database_name,
            credential=credential_from_settings(settings),
        )

    @property
    def transport(self) -> HistorianTransport:
        return self._transport

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> str:
        return "connected" if self.is_connected() else "disconnected"

    @property
    def server(self) -> Any:
        return self._require_handle(self._server, "server")

    @property
    def system(self) -> Any:
        return self._require_handle(self._system, "system")

    @property
    def database(self) -> Any:
        return self._require_handle(self._database, "database")

    def is_connected(self) -> bool:
        return self._is_live()

    def database_for(self, generation: int) -> Any | None:
        """Database handle if ``generation`` is still the live connection, else None."""
        with self._lock:
            if generation != self._generation or not self._is_live():
                return None
            return self._database

    def ensure_connected(self) -> None:
        with self._lock:
            self._ensure_connected()

    def disconnect(self) -> None:
        with self._lock:
            self._disconnect()

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def _is_live(self) -> bool:
        if self._server is None or self._system is None or self._database is None:
            return False
        # server and system sessions drop independently of each other
        system_live = self._transport.system_is_connected(self._system)
        server_live = self._transport.server_is_connected(self._server)
        return system_live and server_live

    def _ensure_connected(self) -> None:
        if self._is_live():
            return

        self._abandon()
        try:
            server = self._transport.find_server(self._server_name)
            if server is None:
                raise ConfigurationError(f"Historian server {self._server_name!r} was not found")
            self._transport.connect_server(server)
            self._server = server

            system = self._transport.system_for_server(server)
            if system is None:
                system = self._transport.default_system()
            if system is None:
                raise ConfigurationError(f"No historian system is available for server {self._server_name!r}")
            self._transport.connect_system(system, self._credential)
            self._system = system

            database = self._transport.find_database(system, self._database_name)
            if database is None:
                raise ConfigurationError(f"Historian database {self._database_name!r} was not found")
            self._database = database
        except ConfigurationError:
            self._abandon()
            raise
        except (HistorianConnectionError, TransportError) as exc:
            self._logger.error(
                "historian connection failed server=%s database=%s error=%s",
                self._server_name,
                self._database_name,
                exc,
            )
            self._abandon()
            if isinstance(exc, HistorianConnectionError):
                raise
            raise HistorianConnectionError(str(exc)) from exc

        if not self._is_live():
            self._abandon()
            raise HistorianConnectionError(f"Unable to connect to historian server {self._server_name!r}")

        self._generation += 1
        self._logger.info(
            "connected historian server=%s database=%s generation=%s",
            self._server_name,
            self._database_name,
            self._generation,
        )

    def _disconnect(self) -> None:
        if self._server is None and self._system is None and self._database is None:
            return
        was_connected = self._is_live()
        try:
            if self._system is not None:
                self._transport.disconnect_system(self._system)
            if self._server is not None:
                self._transport.disconnect_server(self._server)
        finally:
            self._clear_handles()
            self._generation += 1
        if was_connected:
            self._logger.info("disconnected historian server=%s", self._server_name)

    def _abandon(self) -> None:
        system, server = self._system, self._server
        self._clear_handles()
        for disconnect, handle in (
            (self._transport.disconnect_system, system),
            (self._transport.disconnect_server, server),
        ):
            if handle is None:
                continue
            try:
                disconnect(handle)
            except (HistorianConnectionError, TransportError):
                self._logger.warning("cleanup after failed connect did not complete server=%s", self._server_name)

    def _clear_handles(self) -> None:
        self._server = None
        self._system = None
        self._database = None

    def _require_handle(self, handle: Any | None, label: str) -> Any:
        if handle is None:
            raise HistorianConnectionError(f"Historian {label} handle is not available while disconnected")
        return handle


def credential_from_settings(settings: Settings) -> Credential | None:
    if not settings.historian_username:
        return None
    return Credential(
        username=settings.historian_username,
        secret=settings.historian_secret or "",
        auth_domain=settings.historian_auth_domain,
    )
