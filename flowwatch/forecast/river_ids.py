"""
River id resolution.

Users monitor rivers by the app's internal id; NOAA wants a reach id.
"""

import re
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.db import queries

logger = structlog.get_logger(__name__)

_REACH_ID = re.compile(r"^\d{7,9}$")


def _first_reach_id(record) -> Optional[str]:
    """noaa_reach_id, then comid, then reach_id."""
    if record is None:
        return None
    for value in (record.noaa_reach_id, record.comid, record.reach_id):
        if value:
            return str(value)
    return None


class RiverIdResolver:
    """
    Maps internal river ids to forecast-source ids. First hit wins:

    1. explicit ``river_mappings`` row
    2. the id itself, if it already looks like a reach id (7–9 digits)
    3. denormalized fields on the ``stations`` row
    4. the id unchanged
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def resolve(self, river_id: str) -> str:
        try:
            async with self._session_factory() as session:
                mapped = _first_reach_id(await queries.get_river_mapping(session, river_id))
                if mapped:
                    return mapped
                if _REACH_ID.match(river_id):
                    return river_id
                from_station = _first_reach_id(await queries.get_station(session, river_id))
                if from_station:
                    return from_station
        except Exception as e:
            logger.warning("river_id_resolution_failed", river_id=river_id, error=str(e))
        return river_id

    async def resolve_name(self, river_id: str) -> str:
        """Display name from the station record, then the river record."""
        try:
            async with self._session_factory() as session:
                station = await queries.get_station(session, river_id)
                if station is not None and station.name:
                    return station.name
                river = await queries.get_river(session, river_id)
                if river is not None and river.name:
                    return river.name
        except Exception as e:
            logger.warning("river_name_lookup_failed", river_id=river_id, error=str(e))
        return f"River {river_id}"
