"""CLI 入口模块 -- python -m taskify.core <command>

支持的命令：
  show-snapshot   打印本地兜底快照摘要
  clear-snapshot  清空本地兜底快照
"""

import asyncio
import sys

from .config import get_db_path, get_storage_key

_USAGE = """用法: python -m taskify.core <command>
命令:
  show-snapshot   打印本地兜底快照摘要
  clear-snapshot  清空本地兜底快照"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "show-snapshot":
        asyncio.run(show_snapshot())
    elif command == "clear-snapshot":
        asyncio.run(clear_snapshot())
    else:
        print(f"未知命令: {command}")
        print("可用命令: show-snapshot, clear-snapshot")
        sys.exit(1)


async def show_snapshot() -> None:
    """打印快照中的任务"""
    from .store import close_local_store, create_local_store

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print(f"存储键: {get_storage_key()}")

    store = await create_local_store(db_path, get_storage_key())
    try:
        tasks = await store.load()
        print(f"共 {len(tasks)} 条任务")
        for task in tasks:
            due = task.due_date.isoformat() if task.due_date else "-"
            print(f"  [{task.status}] {task.id}  {task.title}  (due {due})")
    finally:
        await close_local_store(store)


async def clear_snapshot() -> None:
    """清空快照"""
    from .store import close_local_store, create_local_store

    store = await create_local_store(get_db_path(), get_storage_key())
    try:
        if await store.clear():
            print("快照已清空")
        else:
            print("清空失败，请查看日志")
            sys.exit(1)
    finally:
        await close_local_store(store)


if __name__ == "__main__":
    main()
