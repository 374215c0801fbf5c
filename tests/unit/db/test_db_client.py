import pytest

from aiscenes.db.client import async_database_url, get_db_session


@pytest.mark.unit
def test_async_database_url_forces_asyncpg():
    assert async_database_url("postgresql://u:p@db:5432/app") == "postgresql+asyncpg://u:p@db:5432/app"
    assert async_database_url("postgresql+asyncpg://db/app") == "postgresql+asyncpg://db/app"


@pytest.mark.asyncio
async def test_session_requires_init():
    with pytest.raises(RuntimeError, match="Database not initialized"):
        async with get_db_session():
            pass
