import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mreverything.conftest import soweto_sandton
from mreverything.storage.repository import CorridorRepo


@pytest.mark.parametrize(
    "overrides",
    [
        {"radius_km": 0.0},
        {"end_lat": -26.2650, "end_lng": 28.0430},
    ],
)
async def test_corridor_table_rejects_malformed_rows(
    sessions: async_sessionmaker[AsyncSession], overrides: dict
) -> None:
    async with sessions() as s:
        with pytest.raises(IntegrityError):
            await CorridorRepo(s).add(soweto_sandton(**overrides))
