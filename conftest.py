"""全局 pytest 配置 -- 临时 SQLite 数据库、Task 构造与内存 PostgREST fixture"""

import json
from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import httpx
import pytest
import pytest_asyncio

BASE_TIME = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from taskify.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def make_task() -> Callable:
    """Task 工厂：id 递增，created_at 依次晚一分钟"""
    from taskify.core.models import Task

    counter = {"n": 0}

    def _make(**overrides) -> Task:
        counter["n"] += 1
        data = {
            "id": f"task-{counter['n']}",
            "title": f"Task {counter['n']}",
            "created_at": BASE_TIME + timedelta(minutes=counter["n"]),
        }
        data.update(overrides)
        return Task(**data)

    return _make


class FakePostgrest:
    """内存 PostgREST：支持 eq./in. 过滤、order、插入/更新/删除与故障注入"""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.requests: list[httpx.Request] = []
        self.fail: dict[tuple[str, str], int] = {}
        self.unreachable: set[tuple[str, str]] = set()
        self._n = 0

    def seed(self, table: str, *rows: dict) -> None:
        self.tables[table].extend(dict(r) for r in rows)

    def requests_to(self, method: str, table: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.endswith(f"/{table}")
        ]

    def _next(self) -> int:
        self._n += 1
        return self._n

    @staticmethod
    def _matches(row: dict, filters: dict[str, str]) -> bool:
        for col, expr in filters.items():
            op, _, value = expr.partition(".")
            if op == "eq" and str(row.get(col)) != value:
                return False
            if op == "in":
                values = [v.strip('"') for v in value.strip("()").split(",")]
                if str(row.get(col)) not in values:
                    return False
        return True

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        key = (request.method, table)
        if key in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if key in self.fail:
            return httpx.Response(self.fail[key], json={"message": "injected failure"})

        params = request.url.params
        filters = {k: v for k, v in params.multi_items() if k not in ("select", "order")}
        rows = self.tables[table]
        matched = [r for r in rows if self._matches(r, filters)]

        if request.method == "GET":
            if order := params.get("order"):
                col, _, direction = order.partition(".")
                matched = sorted(matched, key=lambda r: str(r.get(col)), reverse=direction == "desc")
            return httpx.Response(200, json=matched)

        if request.method == "POST":
            body = json.loads(request.content)
            created = []
            for item in body if isinstance(body, list) else [body]:
                n = self._next()
                row = {
                    "id": f"srv-{n}",
                    "created_at": (BASE_TIME + timedelta(hours=n)).isoformat(),
                    **item,
                }
                rows.append(row)
                created.append(row)
            return httpx.Response(201, json=created)

        if request.method == "PATCH":
            values = json.loads(request.content)
            for row in matched:
                row.update(values)
                row["updated_at"] = (BASE_TIME + timedelta(days=1)).isoformat()
            return httpx.Response(200, json=matched)

        if request.method == "DELETE":
            self.tables[table] = [r for r in rows if r not in matched]
            return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def fake_remote() -> FakePostgrest:
    return FakePostgrest()


@pytest_asyncio.fixture
async def postgrest(fake_remote: FakePostgrest):
    """接到 FakePostgrest 上的 PostgrestClient"""
    from taskify.remote import PostgrestClient

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_remote.handler))
    client = PostgrestClient("https://proj.example.com", "anon-key", http_client=http_client)
    yield client
    await http_client.aclose()


@pytest.fixture
def task_row() -> Callable[..., dict]:
    """远端 tasks 行工厂"""

    def _row(task_id: str, user_id: str = "user-a", **overrides) -> dict:
        row = {
            "id": task_id,
            "user_id": user_id,
            "title": f"Row {task_id}",
            "description": None,
            "due_date": None,
            "due_time": None,
            "priority": "medium",
            "status": "pending",
            "category": "personal",
            "tags": None,
            "assigned_to": None,
            "created_at": BASE_TIME.isoformat(),
            "completed_at": None,
            "is_recurring": False,
            "recurring_pattern": None,
            "created_by_id": user_id,
            "updated_by_id": None,
            "updated_at": None,
        }
        row.update(overrides)
        return row

    return _row
