"""Tests for database engine helpers."""

from typing import Any
from unittest.mock import patch

import pytest
from sqlalchemy import text

from stockcount.database import engine as engine_module


class TestGetSession:
    """Tests for get_session."""

    @pytest.mark.asyncio
    async def test_yields_working_session(self, mock_session_factory: Any) -> None:
        with patch.object(engine_module, "AsyncSessionLocal", mock_session_factory):
            async for session in engine_module.get_session():
                result = await session.execute(text("SELECT 1"))
                assert result.scalar() == 1

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, mocker: Any) -> None:
        session = mocker.AsyncMock()
        factory = mocker.MagicMock()
        factory.return_value.__aenter__.return_value = session

        with patch.object(engine_module, "AsyncSessionLocal", factory):
            generator = engine_module.get_session()
            await generator.__anext__()
            with pytest.raises(RuntimeError):
                await generator.athrow(RuntimeError("boom"))

        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()
