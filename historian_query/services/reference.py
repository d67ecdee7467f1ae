from __future__ import annotations

from historian_query.services.connection import ConnectionManager
from historian_query.transports.base import UnitOfMeasure


class ReferenceDataService:
    def __init__(self, *, connection: ConnectionManager):
        self._connection = connection

    def list_units_of_measure(self) -> list[UnitOfMeasure]:
        """Units defined on the connected system, soft-deleted ones included."""
        self._connection.ensure_connected()
        return self._connection.transport.list_units_of_measure(self._connection.system)

    def list_display_units(self) -> list[UnitOfMeasure]:
        return [unit for unit in self.list_units_of_measure() if not unit.deleted]
