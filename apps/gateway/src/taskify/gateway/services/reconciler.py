"""TaskReconciler -- 规范任务列表的唯一拥有者

会话内所有任务/聊天/通知的修改都经由此组件：
1. 未登录：本地合成 + 整表写入本地兜底存储
2. 已登录：先乐观应用，再调用远端；远端失败时保留本地结果（不回滚、不抛出）
3. 变更流事件经单一 pump 任务转入 apply_change
4. 每个远端回调在应用前重新检查会话 epoch 与目标 id 是否仍存在
"""

import asyncio
import contextlib
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any

import structlog
from pydantic import ValidationError
from taskify.core.models import (
    AuthState,
    ChangeEvent,
    ChangeKind,
    ChatMessage,
    ChatRole,
    FeedTable,
    Notification,
    Task,
    TaskDraft,
    TaskPatch,
    TaskStatus,
    is_local_id,
    new_local_id,
)
from taskify.core.store.protocols import (
    ChangeFeed,
    FeedSubscription,
    LocalTaskStore,
    ReminderScheduler,
    RemoteChatStore,
    RemoteTaskStore,
)
from taskify.core.views import TaskViews, compute_views

log = structlog.get_logger()

Listener = Callable[[], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TaskReconciler:
    """任务状态控制器

    状态流转（单次修改）：idle -> pending(optimistic) -> confirmed | reverted-to-fallback
    """

    def __init__(
        self,
        local_store: LocalTaskStore,
        remote_tasks: RemoteTaskStore | None = None,
        remote_chat: RemoteChatStore | None = None,
        change_feed: ChangeFeed | None = None,
        reminders: ReminderScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            local_store: 本地兜底存储
            remote_tasks: 远端任务存储，None 表示始终走本地路径
            remote_chat: 远端聊天存储，None 表示聊天消息只保存在内存
            change_feed: 变更流，None 表示不订阅
            reminders: 默认提醒调度器
            clock: 当前时间来源（测试注入）
        """
        self._local = local_store
        self._remote_tasks = remote_tasks
        self._remote_chat = remote_chat
        self._feed = change_feed
        self._reminders = reminders
        self._clock = clock or _utcnow

        self._auth = AuthState.anonymous()
        self._epoch = 0
        self._revision = 0

        self._tasks: list[Task] = []
        self._messages: list[ChatMessage] = []
        self._notifications: list[Notification] = []

        # 本地修改序号：id -> 最近一次本地修改/确认的序号
        self._seq = 0
        self._touched: dict[str, int] = {}
        self._tombstones: dict[str, int] = {}
        self._inflight: Counter[str] = Counter()
        # 创建中的临时 id -> 期间累积的本地补丁
        self._pending_creates: dict[str, TaskPatch | None] = {}

        self._subscription: FeedSubscription | None = None
        self._pump_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

    # ============================================================
    # 只读快照
    # ============================================================

    @property
    def auth(self) -> AuthState:
        return self._auth

    @property
    def epoch(self) -> int:
        """会话代数，每次切换会话递增"""
        return self._epoch

    @property
    def revision(self) -> int:
        """每次规范状态变化递增"""
        return self._revision

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def chat_messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def uses_remote(self) -> bool:
        return self._auth.is_authenticated and self._remote_tasks is not None

    def get_task(self, task_id: str) -> Task | None:
        idx = self._index_of(task_id)
        return self._tasks[idx] if idx is not None else None

    def views(self, today: date) -> TaskViews:
        return compute_views(self._tasks, self._notifications, today)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """注册状态变化回调，返回注销函数"""
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    # ============================================================
    # 会话生命周期
    # ============================================================

    async def start(self, auth: AuthState | None = None) -> None:
        await self.set_auth(auth or AuthState.anonymous())

    async def set_auth(self, auth: AuthState) -> None:
        """切换会话：退订旧变更流、重置状态、重新加载"""
        self._epoch += 1
        epoch = self._epoch
        await self._stop_feed()

        self._auth = auth
        self._tasks = []
        self._messages = []
        self._notifications = []
        self._touched.clear()
        self._tombstones.clear()
        self._inflight.clear()
        self._pending_creates.clear()
        self._changed()

        if not self.uses_remote:
            tasks = await self._guarded("local_load", self._local.load(), [])
            if epoch != self._epoch:
                return
            self._tasks = self._dedupe(tasks)
            self._changed()
            await log.ainfo("session_loaded_local", task_count=len(self._tasks))
            return

        await self._subscribe(epoch)
        await self.refresh()
        if self._remote_chat is not None and self._auth.user_id:
            messages = await self._guarded(
                "fetch_messages",
                self._remote_chat.fetch_messages(self._auth.user_id),
                [],
            )
            if epoch != self._epoch:
                return
            for message in messages:
                self._insert_message(message)
            self._changed()
        await log.ainfo(
            "session_loaded_remote",
            user_id=self._auth.user_id,
            task_count=len(self._tasks),
            message_count=len(self._messages),
        )

    async def close(self) -> None:
        """退订变更流并等待后台任务结束"""
        self._epoch += 1
        await self._stop_feed()
        await self.wait_background()

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ============================================================
    # 任务修改
    # ============================================================

    async def add(self, draft: TaskDraft | dict[str, Any]) -> Task | None:
        """新增任务

        Returns:
            已应用的任务（服务端行或本地合成任务）；草稿不合法时返回 None
        """
        draft = self._coerce(TaskDraft, draft)
        if draft is None:
            return None

        epoch = self._epoch
        provisional = draft.to_task(
            new_local_id(),
            created_at=self._clock(),
            user_id=self._auth.user_id,
        )
        self._tasks.insert(0, provisional)
        self._stamp(provisional.id)
        self._changed()

        if not self.uses_remote:
            await self._persist(epoch)
            return provisional

        user_id = self._auth.user_id
        self._pending_creates[provisional.id] = None
        self._inflight[provisional.id] += 1
        try:
            created = await self._guarded(
                "remote_create",
                self._remote_tasks.create(user_id, draft),
                None,
            )
        finally:
            self._release(provisional.id)
        deferred = self._pending_creates.pop(provisional.id, None)

        if epoch != self._epoch:
            log.info("stale_session_result_dropped", op="create")
            return created or provisional

        if created is None:
            log.warning("remote_create_fell_back", task_id=provisional.id)
            return self.get_task(provisional.id) or provisional

        return await self._confirm_create(epoch, user_id, provisional, created, deferred)

    async def _confirm_create(
        self,
        epoch: int,
        user_id: str,
        provisional: Task,
        created: Task,
        deferred: TaskPatch | None,
    ) -> Task:
        """两阶段 id：用服务端行替换临时任务"""
        idx = self._index_of(provisional.id)

        if idx is None:
            # 创建途中临时任务已被删除：不重新插入，并删除远端行
            log.info("create_confirmed_after_delete", task_id=created.id)
            self._tombstones[created.id] = self._next_seq()
            self._touched.pop(created.id, None)
            early = self._index_of(created.id)
            if early is not None:
                # 变更流先送达的服务端行
                del self._tasks[early]
                self._changed()
            await self._guarded(
                "remote_delete",
                self._remote_tasks.delete(user_id, created.id),
                False,
            )
            return created

        if self._index_of(created.id) is not None or created.id in self._tombstones:
            # 变更流已先送达（或已被删除）服务端行
            del self._tasks[idx]
        else:
            self._tasks[idx] = created
        self._stamp(created.id)
        self._changed()

        if created.due_date is not None and self._reminders is not None:
            self._spawn(
                "create_default_reminders",
                self._reminders.create_default_reminders(
                    user_id, created.id, created.due_date, created.due_time
                ),
            )

        if deferred is not None and epoch == self._epoch and self.get_task(created.id):
            return await self.update(created.id, deferred) or created
        return self.get_task(created.id) or created

    async def update(
        self,
        task_id: str,
        patch: TaskPatch | dict[str, Any],
    ) -> Task | None:
        """稀疏更新

        Returns:
            当前规范副本；目标不存在或补丁不合法时返回 None
        """
        patch = self._coerce(TaskPatch, patch)
        if patch is None:
            return None

        current = self.get_task(task_id)
        if current is None:
            log.warning("update_target_missing", task_id=task_id)
            return None

        patch = patch.normalized(current, now=self._clock())
        if patch.is_empty:
            return current
        try:
            optimistic = patch.apply_to(current)
        except ValidationError as e:
            log.warning("update_patch_invalid", task_id=task_id, error_count=e.error_count())
            return None

        epoch = self._epoch
        self._replace(optimistic)
        issued = self._stamp(task_id)
        self._changed()

        if not self.uses_remote:
            await self._persist(epoch)
            return optimistic

        if is_local_id(task_id):
            if task_id in self._pending_creates:
                self._pending_creates[task_id] = self._merge_patches(
                    self._pending_creates[task_id], patch
                )
            return optimistic

        self._inflight[task_id] += 1
        try:
            server = await self._guarded(
                "remote_update",
                self._remote_tasks.update(self._auth.user_id, task_id, patch),
                None,
            )
        finally:
            self._release(task_id)

        if epoch != self._epoch:
            log.info("stale_session_result_dropped", op="update")
            return optimistic
        if self._index_of(task_id) is None:
            log.info("update_dropped_target_deleted", task_id=task_id)
            return None
        if server is None:
            log.warning("remote_update_fell_back", task_id=task_id)
            return self.get_task(task_id)
        if self._touched.get(task_id) != issued:
            # 之后又有本地修改，以最后一次修改为准
            return self.get_task(task_id)

        self._replace(server)
        self._stamp(task_id)
        self._changed()
        return server

    async def delete(self, task_id: str) -> bool:
        """删除任务（乐观，不因远端失败而恢复）

        Returns:
            本地是否删除了任务
        """
        idx = self._index_of(task_id)
        if idx is None:
            return False

        epoch = self._epoch
        del self._tasks[idx]
        self._tombstones[task_id] = self._next_seq()
        self._touched.pop(task_id, None)
        self._changed()

        if not self.uses_remote:
            await self._persist(epoch)
            return True
        if is_local_id(task_id):
            return True

        ok = await self._guarded(
            "remote_delete",
            self._remote_tasks.delete(self._auth.user_id, task_id),
            False,
        )
        if not ok:
            log.warning("remote_delete_failed_kept_local", task_id=task_id)
        return True

    async def toggle_complete(self, task_id: str) -> Task | None:
        """pending <-> completed；取消完成会清空完成时间，不恢复旧值"""
        task = self.get_task(task_id)
        if task is None:
            return None
        if task.is_completed:
            patch = TaskPatch(status=TaskStatus.PENDING, completed_at=None)
        else:
            patch = TaskPatch(status=TaskStatus.COMPLETED, completed_at=self._clock())
        return await self.update(task_id, patch)

    async def refresh(self) -> list[Task]:
        """拉取远端并合并

        拉取发出之后的本地修改、在途修改与删除不会被这次结果覆盖。
        """
        if not self.uses_remote:
            return self.tasks

        epoch = self._epoch
        started = self._seq
        fetched = await self._guarded(
            "remote_fetch",
            self._remote_tasks.fetch_all(self._auth.user_id),
            [],
        )
        if epoch != self._epoch:
            return self.tasks

        self._merge_fetch(fetched, started)
        self._changed()
        return self.tasks

    def _merge_fetch(self, fetched: list[Task], started: int) -> None:
        local_by_id = {t.id: t for t in self._tasks}

        def _keep_local(task_id: str) -> bool:
            return task_id in self._inflight or self._touched.get(task_id, -1) > started

        merged: list[Task] = []
        seen: set[str] = set()
        for task in fetched:
            if task.id in seen or self._tombstones.get(task.id, -1) > started:
                continue
            if _keep_local(task.id):
                local = local_by_id.get(task.id)
                if local is None:
                    continue
                task = local
            merged.append(task)
            seen.add(task.id)

        # 拉取结果还不知道的本地任务（临时 id、在途或更新的修改）排在最前
        extras = [
            t
            for t in self._tasks
            if t.id not in seen and (is_local_id(t.id) or _keep_local(t.id))
        ]
        self._tasks = extras + merged

        # 拉取发出之前的记录已反映在结果中
        self._touched = {
            k: v for k, v in self._touched.items() if v > started or k in self._inflight
        }
        self._tombstones = {k: v for k, v in self._tombstones.items() if v > started}

    # ============================================================
    # 变更流
    # ============================================================

    def apply_change(self, event: ChangeEvent) -> None:
        """变更流合并入口（至少一次投递，可能重复/乱序）"""
        if event.table == FeedTable.CHAT_MESSAGES:
            if event.kind == ChangeKind.INSERT and event.message is not None:
                if self._insert_message(event.message):
                    self._changed()
            return

        task_id = event.record_id
        idx = self._index_of(task_id)

        if event.kind == ChangeKind.INSERT:
            if idx is not None or task_id in self._tombstones:
                return
            self._tasks.insert(0, event.task)
            self._stamp(task_id)
        elif event.kind == ChangeKind.UPDATE:
            if idx is None:
                return
            self._tasks[idx] = event.task
            self._stamp(task_id)
        else:
            if idx is None:
                return
            del self._tasks[idx]
            self._tombstones[task_id] = self._next_seq()
            self._touched.pop(task_id, None)

        self._changed()

    async def _subscribe(self, epoch: int) -> None:
        if self._feed is None or not self._auth.user_id:
            return
        try:
            sub = await self._feed.subscribe(self._auth.user_id)
        except Exception as e:
            log.warning("feed_subscribe_failed", error=str(e), error_type=type(e).__name__)
            return
        if epoch != self._epoch:
            await sub.cancel()
            return
        self._subscription = sub
        self._pump_task = asyncio.create_task(self._pump(sub, epoch))

    async def _pump(self, sub: FeedSubscription, epoch: int) -> None:
        async for event in sub:
            if epoch != self._epoch:
                break
            self.apply_change(event)
            log.debug(
                "feed_event_applied",
                table=str(event.table),
                kind=str(event.kind),
                record_id=event.record_id,
            )
        log.info("feed_pump_stopped", epoch=epoch)

    async def _stop_feed(self) -> None:
        sub, task = self._subscription, self._pump_task
        self._subscription = None
        self._pump_task = None
        if sub is not None:
            await sub.cancel()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ============================================================
    # 聊天与通知
    # ============================================================

    async def add_message(
        self,
        content: str,
        role: ChatRole,
        task_id: str | None = None,
    ) -> ChatMessage:
        """追加聊天消息；远端失败或未登录时合成本地消息"""
        epoch = self._epoch
        stored = None
        if self._auth.is_authenticated and self._remote_chat is not None:
            stored = await self._guarded(
                "remote_add_message",
                self._remote_chat.add_message(self._auth.user_id, content, role, task_id),
                None,
            )
        message = stored or ChatMessage(
            id=new_local_id(),
            content=content,
            role=role,
            timestamp=self._clock(),
            task_id=task_id,
        )
        if epoch == self._epoch and self._insert_message(message):
            self._changed()
        return message

    def receive_notification(self, notification: Notification) -> bool:
        """按 id 幂等接收通知（最新在前）"""
        if any(n.id == notification.id for n in self._notifications):
            return False
        self._notifications.insert(0, notification)
        self._changed()
        return True

    def mark_notification_read(self, notification_id: str) -> bool:
        for i, n in enumerate(self._notifications):
            if n.id == notification_id:
                if not n.is_read:
                    self._notifications[i] = n.model_copy(update={"is_read": True})
                    self._changed()
                return True
        return False

    # ============================================================
    # 内部工具
    # ============================================================

    def _index_of(self, task_id: str) -> int | None:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def _replace(self, task: Task) -> None:
        idx = self._index_of(task.id)
        if idx is not None:
            self._tasks[idx] = task

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _stamp(self, task_id: str) -> int:
        seq = self._next_seq()
        self._touched[task_id] = seq
        return seq

    def _release(self, task_id: str) -> None:
        self._inflight[task_id] -= 1
        if self._inflight[task_id] <= 0:
            del self._inflight[task_id]

    def _insert_message(self, message: ChatMessage) -> bool:
        """按 id 去重，按 timestamp 升序插入"""
        if any(m.id == message.id for m in self._messages):
            return False
        idx = len(self._messages)
        while idx > 0 and self._messages[idx - 1].timestamp > message.timestamp:
            idx -= 1
        self._messages.insert(idx, message)
        return True

    @staticmethod
    def _dedupe(tasks: list[Task]) -> list[Task]:
        seen: set[str] = set()
        unique = []
        for task in tasks:
            if task.id not in seen:
                seen.add(task.id)
                unique.append(task)
        return unique

    @staticmethod
    def _merge_patches(first: TaskPatch | None, second: TaskPatch) -> TaskPatch:
        if first is None:
            return second
        return TaskPatch(**{**first.changes(), **second.changes()})

    @staticmethod
    def _coerce(model: type, value: Any) -> Any:
        if isinstance(value, model):
            return value
        try:
            return model.model_validate(value)
        except ValidationError as e:
            log.warning(
                "mutation_input_invalid",
                model=model.__name__,
                error_count=e.error_count(),
            )
            return None

    async def _persist(self, epoch: int) -> None:
        if epoch != self._epoch:
            return
        # 本地路径没有拉取与变更流，不需要修改记录
        self._touched.clear()
        self._tombstones.clear()
        ok = await self._guarded("local_save", self._local.save(self.tasks), False)
        if not ok:
            log.warning("fallback_persist_failed", task_count=len(self._tasks))

    async def _guarded(self, op: str, awaitable: Awaitable[Any], default: Any) -> Any:
        """协作方调用边界：异常记录日志并返回降级值"""
        try:
            return await awaitable
        except Exception as e:
            log.error(
                "collaborator_call_failed",
                op=op,
                error=str(e),
                error_type=type(e).__name__,
            )
            return default

    def _spawn(self, name: str, awaitable: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._guarded(name, awaitable, None))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _changed(self) -> None:
        self._revision += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                log.warning("listener_failed", error=str(e), error_type=type(e).__name__)
