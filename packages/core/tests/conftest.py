"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, time
from pathlib import Path

import pytest
import pytest_asyncio
from taskify.core.store import SqliteFallbackStore


@pytest_asyncio.fixture
async def fallback_store(tmp_path: Path) -> AsyncGenerator[SqliteFallbackStore, None]:
    """核心层已初始化的本地兜底存储"""
    from taskify.core.store import close_local_store, create_local_store

    store = await create_local_store(str(tmp_path / "nested" / "core_test.db"))
    yield store
    await close_local_store(store)


@pytest.fixture
def full_task(make_task):
    """所有可选字段都有值（含显式空值）的任务"""
    return make_task(
        description="",
        due_date=date(2026, 3, 12),
        due_time=time(14, 30),
        priority="high",
        status="completed",
        category="work",
        tags=[],
        assigned_to=["bob@example.com"],
        completed_at=datetime(2026, 3, 11, 8, 0, tzinfo=UTC),
        is_recurring=False,
        recurring_pattern="weekly",
        created_by_id="user-a",
        updated_by_id="user-b",
        updated_at=datetime(2026, 3, 11, 8, 0, tzinfo=UTC),
    )
