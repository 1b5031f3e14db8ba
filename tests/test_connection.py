"""
Tests for engine construction.
"""
import pytest

from bloompay.config import Settings
from bloompay.database.connection import create_engine


class TestCreateEngine:
    """Test suite for create_engine."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sqlite_waits_for_write_lock(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"database_busy_timeout_seconds": 7.5})
        engine = create_engine(settings)
        try:
            async with engine.connect() as conn:
                busy_timeout = (await conn.exec_driver_sql("PRAGMA busy_timeout")).scalar()
        finally:
            await engine.dispose()

        assert busy_timeout == 7500
