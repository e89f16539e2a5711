"""TaskReconciler 测试

覆盖：
1. 本地兜底路径（未登录）：合成、持久化、重启后恢复
2. 远端路径：乐观应用、失败不回滚、两阶段 id
3. 变更流合并：幂等插入、墓碑、会话切换后退订
4. 竞争：更新在途时删除、创建在途时删除/更新、拉取在途时的本地修改
"""

import asyncio
from datetime import date

from taskify.core.models import (
    AuthState,
    ChangeEvent,
    ChangeKind,
    ChatRole,
    Notification,
    NotificationType,
    Priority,
    TaskCategory,
    TaskStatus,
    is_local_id,
)
from taskify.gateway.services.reconciler import TaskReconciler

TODAY = date(2026, 3, 10)


async def sign_in(rec: TaskReconciler, user_id: str = "user-a") -> TaskReconciler:
    await rec.set_auth(AuthState(user_id=user_id, access_token=f"jwt-{user_id}"))
    return rec


class TestLocalPath:
    """未登录：所有修改本地合成并整表写入兜底存储"""

    async def test_offline_add_buy_milk(self, reconciler, local_store, remote_store):
        task = await reconciler.add(
            {"title": "Buy milk", "priority": "low", "category": "shopping"}
        )

        assert is_local_id(task.id)
        assert task.status == TaskStatus.PENDING
        assert task.priority == Priority.LOW
        assert task.category == TaskCategory.SHOPPING
        assert reconciler.tasks == [task]
        assert remote_store.calls == []

        views = reconciler.views(TODAY)
        assert views.today_tasks == []
        assert views.upcoming == []
        assert views.overdue == []
        assert views.completed == []

        saved = await local_store.load()
        assert [t.id for t in saved] == [task.id]

    async def test_ids_unique_and_newest_first(self, reconciler):
        first = await reconciler.add({"title": "One"})
        second = await reconciler.add({"title": "Two"})
        third = await reconciler.add({"title": "Three"})

        ids = [t.id for t in reconciler.tasks]
        assert ids == [third.id, second.id, first.id]
        assert len(set(ids)) == 3

    async def test_invalid_draft_is_rejected(self, reconciler):
        assert await reconciler.add({"title": "   "}) is None
        assert await reconciler.add({"priority": "urgent", "title": "x"}) is None
        assert reconciler.tasks == []

    async def test_new_task_always_starts_pending(self, reconciler):
        task = await reconciler.add({"title": "Done already?", "status": "completed"})
        assert task.status == TaskStatus.PENDING
        assert task.completed_at is None

    async def test_sparse_update_and_explicit_clear(self, reconciler, local_store):
        task = await reconciler.add({"title": "Report", "description": "draft v1"})

        updated = await reconciler.update(task.id, {"due_date": "2026-03-10"})
        assert updated.due_date == TODAY
        assert updated.description == "draft v1"
        assert updated.title == "Report"

        cleared = await reconciler.update(task.id, {"description": None})
        assert cleared.description is None
        assert cleared.due_date == TODAY

        saved = await local_store.load()
        assert saved[0].description is None
        assert reconciler.views(TODAY).today_tasks == [cleared]

    async def test_update_cannot_clear_title(self, reconciler):
        task = await reconciler.add({"title": "Keep me"})
        assert await reconciler.update(task.id, {"title": None}) is None
        assert reconciler.get_task(task.id).title == "Keep me"

    async def test_update_missing_task(self, reconciler):
        assert await reconciler.update("nope", {"title": "x"}) is None

    async def test_status_change_keeps_completion_invariant(self, reconciler, clock):
        task = await reconciler.add({"title": "Invariant"})

        done = await reconciler.update(task.id, {"status": "completed"})
        assert done.completed_at == clock()

        reopened = await reconciler.update(task.id, {"status": "pending"})
        assert reopened.completed_at is None

        via_timestamp = await reconciler.update(task.id, {"completed_at": clock().isoformat()})
        assert via_timestamp.status == TaskStatus.COMPLETED

    async def test_toggle_does_not_restore_completion_time(self, reconciler, clock):
        task = await reconciler.add({"title": "Toggle"})

        first = await reconciler.toggle_complete(task.id)
        assert first.status == TaskStatus.COMPLETED
        assert first.completed_at == clock()

        clock.advance(hours=1)
        undone = await reconciler.toggle_complete(task.id)
        assert undone.status == TaskStatus.PENDING
        assert undone.completed_at is None

        again = await reconciler.toggle_complete(task.id)
        assert again.completed_at == clock()
        assert again.completed_at != first.completed_at

    async def test_toggle_missing_task(self, reconciler):
        assert await reconciler.toggle_complete("nope") is None

    async def test_delete_persists(self, reconciler, local_store):
        keep = await reconciler.add({"title": "Keep"})
        gone = await reconciler.add({"title": "Gone"})

        assert await reconciler.delete(gone.id) is True
        assert await reconciler.delete(gone.id) is False

        assert [t.id for t in await local_store.load()] == [keep.id]

    async def test_offline_session_keeps_no_edit_history(self, reconciler):
        kept = await reconciler.add({"title": "Keep"})
        gone = await reconciler.add({"title": "Gone"})
        await reconciler.update(kept.id, {"priority": "high"})
        await reconciler.delete(gone.id)

        assert reconciler._touched == {}
        assert reconciler._tombstones == {}
        assert [t.title for t in reconciler.tasks] == ["Keep"]

    async def test_restart_restores_snapshot(self, reconciler, local_store):
        await reconciler.add({"title": "Dentist", "due_date": "2026-03-12", "tags": []})
        task = await reconciler.add({"title": "Gym"})
        await reconciler.toggle_complete(task.id)

        fresh = TaskReconciler(local_store)
        await fresh.start()

        assert [t.model_dump() for t in fresh.tasks] == [
            t.model_dump() for t in reconciler.tasks
        ]
        assert fresh.tasks[1].tags == []

    async def test_local_save_failure_keeps_memory_state(self, reconciler, local_store, db_conn):
        await db_conn.execute("DROP TABLE fallback_slots")
        task = await reconciler.add({"title": "Unsaved"})
        assert reconciler.get_task(task.id) is not None


class TestRemotePath:
    """已登录：乐观应用 + 远端确认，失败保留本地结果"""

    async def test_create_swaps_provisional_id(self, signed_in, remote_store):
        task = await signed_in.add({"title": "Call mom"})

        assert task.id == "srv-1"
        assert [t.id for t in signed_in.tasks] == ["srv-1"]
        assert remote_store.ops("create") == [("create", "user-a", "Call mom")]

    async def test_provisional_task_visible_while_create_in_flight(self, signed_in, remote_store):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Optimistic"}))
        await remote_store.wait_entered("create")

        assert len(signed_in.tasks) == 1
        assert is_local_id(signed_in.tasks[0].id)

        gate.set()
        await pending
        assert [t.id for t in signed_in.tasks] == ["srv-1"]

    async def test_remote_create_failure_keeps_single_local_entry(self, signed_in, remote_store):
        remote_store.fail.add("create")

        task = await signed_in.add({"title": "Offline-ish"})

        assert is_local_id(task.id)
        assert signed_in.tasks == [task]

    async def test_remote_create_exception_is_contained(self, signed_in, remote_store):
        remote_store.raises.add("create")
        task = await signed_in.add({"title": "Boom"})
        assert is_local_id(task.id)
        assert len(signed_in.tasks) == 1

    async def test_signed_in_mutations_do_not_touch_fallback(self, signed_in, local_store):
        await signed_in.add({"title": "Remote only"})
        assert await local_store.load() == []

    async def test_reminders_scheduled_for_due_date(self, signed_in, reminders):
        await signed_in.add({"title": "Dentist", "due_date": "2026-03-12"})
        await signed_in.wait_background()

        reminders.create_default_reminders.assert_awaited_once_with(
            "user-a", "srv-1", date(2026, 3, 12), None
        )

    async def test_no_reminders_without_due_date(self, signed_in, reminders):
        await signed_in.add({"title": "Someday"})
        await signed_in.wait_background()
        reminders.create_default_reminders.assert_not_called()

    async def test_reminder_failure_does_not_affect_task(self, signed_in, reminders):
        reminders.create_default_reminders.side_effect = RuntimeError("reminders down")

        task = await signed_in.add({"title": "Dentist", "due_date": "2026-03-12"})
        await signed_in.wait_background()

        assert signed_in.get_task(task.id) is not None

    async def test_update_confirmed_by_server_row(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        updated = await reconciler.update("srv-a", {"title": "Renamed"})

        assert updated.title == "Renamed"
        assert updated.updated_by_id == "user-a"
        assert remote_store.ops("update") == [
            ("update", "user-a", "srv-a", {"title": "Renamed"})
        ]

    async def test_update_failure_keeps_optimistic_copy(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a", title="Old"))
        await sign_in(reconciler)
        remote_store.fail.add("update")

        updated = await reconciler.update("srv-a", {"title": "New"})

        assert updated.title == "New"
        assert reconciler.get_task("srv-a").title == "New"

    async def test_update_exception_keeps_optimistic_copy(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a", title="Old"))
        await sign_in(reconciler)
        remote_store.raises.add("update")

        await reconciler.update("srv-a", {"title": "New"})
        assert reconciler.get_task("srv-a").title == "New"

    async def test_delete_failure_does_not_restore(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)
        remote_store.fail.add("delete")

        assert await reconciler.delete("srv-a") is True
        assert reconciler.get_task("srv-a") is None

    async def test_toggle_forwards_status_and_timestamp(self, reconciler, remote_store, make_task, clock):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        await reconciler.toggle_complete("srv-a")

        _, _, _, changes = remote_store.ops("update")[0]
        assert changes == {"status": TaskStatus.COMPLETED, "completed_at": clock()}

    async def test_last_write_wins(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        gate = remote_store.hold("update")
        first = asyncio.create_task(reconciler.update("srv-a", {"title": "First"}))
        await remote_store.wait_entered("update")

        await reconciler.update("srv-a", {"title": "Second"})
        gate.set()
        await first

        assert reconciler.get_task("srv-a").title == "Second"


class TestRaces:
    async def test_delete_while_update_in_flight(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        gate = remote_store.hold("update")
        pending = asyncio.create_task(reconciler.update("srv-a", {"title": "Late"}))
        await remote_store.wait_entered("update")

        assert await reconciler.delete("srv-a") is True
        gate.set()

        assert await pending is None
        assert reconciler.tasks == []

    async def test_feed_delivers_row_before_create_confirms(
        self, signed_in, remote_store, feed, settle, make_task
    ):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Feed first"}))
        await remote_store.wait_entered("create")

        server_row = make_task(id="srv-1", title="Feed first")
        await feed.publish("user-a", ChangeEvent.for_task(ChangeKind.INSERT, server_row))
        await settle()
        assert len(signed_in.tasks) == 2

        gate.set()
        created = await pending

        assert created.id == "srv-1"
        assert [t.id for t in signed_in.tasks] == ["srv-1"]

    async def test_delete_provisional_while_create_in_flight(
        self, signed_in, remote_store, feed, settle, make_task
    ):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Never mind"}))
        await remote_store.wait_entered("create")

        provisional_id = signed_in.tasks[0].id
        assert await signed_in.delete(provisional_id) is True
        assert remote_store.ops("delete") == []

        gate.set()
        await pending

        assert signed_in.tasks == []
        assert remote_store.ops("delete") == [("delete", "user-a", "srv-1")]
        assert "srv-1" not in remote_store.rows

        # 迟到的变更流插入不会把任务带回来
        late = make_task(id="srv-1", title="Never mind")
        await feed.publish("user-a", ChangeEvent.for_task(ChangeKind.INSERT, late))
        await settle()
        assert signed_in.tasks == []

    async def test_delete_provisional_after_feed_delivered_row(
        self, signed_in, remote_store, feed, settle, make_task
    ):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Changed my mind"}))
        await remote_store.wait_entered("create")

        provisional_id = signed_in.tasks[0].id
        server_row = make_task(id="srv-1", title="Changed my mind")
        await feed.publish("user-a", ChangeEvent.for_task(ChangeKind.INSERT, server_row))
        await settle()
        assert [t.id for t in signed_in.tasks] == ["srv-1", provisional_id]

        assert await signed_in.delete(provisional_id) is True
        gate.set()
        await pending

        assert signed_in.tasks == []
        assert remote_store.ops("delete") == [("delete", "user-a", "srv-1")]
        assert "srv-1" not in remote_store.rows

    async def test_update_provisional_replayed_after_create(self, signed_in, remote_store):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Draft"}))
        await remote_store.wait_entered("create")

        provisional_id = signed_in.tasks[0].id
        optimistic = await signed_in.update(provisional_id, {"priority": "high"})
        assert optimistic.priority == Priority.HIGH
        assert remote_store.ops("update") == []

        gate.set()
        created = await pending

        assert created.id == "srv-1"
        assert created.priority == Priority.HIGH
        assert remote_store.ops("update") == [
            ("update", "user-a", "srv-1", {"priority": Priority.HIGH})
        ]
        assert [t.id for t in signed_in.tasks] == ["srv-1"]

    async def test_sign_out_drops_stale_create(self, signed_in, remote_store, feed):
        gate = remote_store.hold("create")
        pending = asyncio.create_task(signed_in.add({"title": "Stale"}))
        await remote_store.wait_entered("create")

        await signed_in.set_auth(AuthState.anonymous())
        assert feed.subscriber_count("user-a") == 0

        gate.set()
        await pending

        assert signed_in.tasks == []
        assert not signed_in.uses_remote

    async def test_refresh_keeps_in_flight_update(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a", title="Remote title"))
        await sign_in(reconciler)

        gate = remote_store.hold("update")
        pending = asyncio.create_task(reconciler.update("srv-a", {"title": "Local edit"}))
        await remote_store.wait_entered("update")

        await reconciler.refresh()
        assert reconciler.get_task("srv-a").title == "Local edit"

        gate.set()
        await pending
        assert reconciler.get_task("srv-a").title == "Local edit"

    async def test_refresh_respects_delete_issued_during_fetch(
        self, reconciler, remote_store, make_task
    ):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)
        remote_store.fail.add("delete")

        gate = remote_store.hold("fetch_all")
        pending = asyncio.create_task(reconciler.refresh())
        await remote_store.wait_entered("fetch_all")

        await reconciler.delete("srv-a")
        gate.set()
        await pending

        assert reconciler.get_task("srv-a") is None

    async def test_refresh_keeps_feed_insert_during_fetch(
        self, signed_in, remote_store, feed, settle, make_task
    ):
        gate = remote_store.hold("fetch_all")
        pending = asyncio.create_task(signed_in.refresh())
        await remote_store.wait_entered("fetch_all")

        await feed.publish(
            "user-a", ChangeEvent.for_task(ChangeKind.INSERT, make_task(id="srv-live"))
        )
        await settle()
        gate.set()
        await pending

        assert signed_in.get_task("srv-live") is not None



class TestChangeFeed:
    async def test_duplicate_insert_is_idempotent(self, signed_in, feed, settle, make_task):
        task = make_task(id="srv-x")
        event = ChangeEvent.for_task(ChangeKind.INSERT, task)

        await feed.publish("user-a", event)
        await feed.publish("user-a", event)
        await settle()

        assert [t.id for t in signed_in.tasks] == ["srv-x"]

    async def test_update_and_delete_events(self, signed_in, feed, settle, make_task):
        task = make_task(id="srv-x", title="Before")
        signed_in.apply_change(ChangeEvent.for_task(ChangeKind.INSERT, task))

        after = task.model_copy(update={"title": "After"})
        await feed.publish("user-a", ChangeEvent.for_task(ChangeKind.UPDATE, after))
        await settle()
        assert signed_in.get_task("srv-x").title == "After"

        await feed.publish("user-a", ChangeEvent.task_deleted("srv-x"))
        await settle()
        assert signed_in.tasks == []

    async def test_unknown_ids_are_ignored(self, signed_in, make_task):
        revision = signed_in.revision
        signed_in.apply_change(
            ChangeEvent.for_task(ChangeKind.UPDATE, make_task(id="srv-ghost"))
        )
        signed_in.apply_change(ChangeEvent.task_deleted("srv-ghost"))

        assert signed_in.tasks == []
        assert signed_in.revision == revision

    async def test_insert_after_delete_is_ignored(self, signed_in, make_task):
        task = make_task(id="srv-x")
        signed_in.apply_change(ChangeEvent.for_task(ChangeKind.INSERT, task))
        signed_in.apply_change(ChangeEvent.task_deleted("srv-x"))
        signed_in.apply_change(ChangeEvent.for_task(ChangeKind.INSERT, task))

        assert signed_in.tasks == []

    async def test_chat_message_events_dedupe(self, signed_in, chat_store, feed, settle):
        stored = await signed_in.add_message("hello", ChatRole.USER)
        await feed.publish("user-a", ChangeEvent.for_message(stored))
        await settle()

        assert [m.id for m in signed_in.chat_messages] == [stored.id]

    async def test_switching_user_moves_subscription(self, signed_in, feed, settle, make_task):
        assert feed.subscriber_count("user-a") == 1

        await sign_in(signed_in, "user-b")
        assert feed.subscriber_count("user-a") == 0
        assert feed.subscriber_count("user-b") == 1

        await feed.publish("user-a", ChangeEvent.for_task(ChangeKind.INSERT, make_task()))
        await settle()
        assert signed_in.tasks == []

    async def test_close_cancels_subscription(self, signed_in, feed):
        await signed_in.close()
        assert feed.subscriber_count("user-a") == 0


class TestSession:
    async def test_sign_in_loads_owned_and_shared(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-mine"))
        remote_store.seed(make_task(id="srv-shared"), owner="user-b")
        remote_store.seed(make_task(id="srv-private"), owner="user-b")
        remote_store.share("srv-shared", "user-a")

        await sign_in(reconciler)

        assert [t.id for t in reconciler.tasks] == ["srv-shared", "srv-mine"]
        assert reconciler.uses_remote

    async def test_sign_in_loads_chat_history(self, reconciler, chat_store):
        await chat_store.add_message("user-a", "earlier", ChatRole.USER)
        await sign_in(reconciler)
        assert [m.content for m in reconciler.chat_messages] == ["earlier"]

    async def test_sign_out_returns_to_fallback(self, reconciler, make_task, remote_store):
        offline = await reconciler.add({"title": "Offline"})
        remote_store.seed(make_task(id="srv-a"))

        await sign_in(reconciler)
        assert [t.id for t in reconciler.tasks] == ["srv-a"]

        await reconciler.set_auth(AuthState.anonymous())
        assert [t.id for t in reconciler.tasks] == [offline.id]
        assert reconciler.chat_messages == []

    async def test_fetch_failure_yields_empty_list(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        remote_store.fail.add("fetch_all")
        assert await reconciler.refresh() == []

    async def test_refresh_drops_rows_deleted_elsewhere(self, reconciler, remote_store, make_task):
        remote_store.seed(make_task(id="srv-a"))
        await sign_in(reconciler)

        del remote_store.rows["srv-a"]
        await reconciler.refresh()
        assert reconciler.tasks == []

    async def test_refresh_when_signed_out_returns_current(self, reconciler, remote_store):
        task = await reconciler.add({"title": "Local"})
        assert await reconciler.refresh() == [task]
        assert remote_store.ops("fetch_all") == []


class TestChatAndNotifications:
    async def test_messages_fall_back_to_local(self, reconciler):
        message = await reconciler.add_message("offline note", ChatRole.USER)
        assert is_local_id(message.id)
        assert reconciler.chat_messages == [message]

    async def test_remote_message_failure_degrades(self, signed_in, chat_store):
        chat_store.fail = True
        message = await signed_in.add_message("hi", ChatRole.USER, task_id="srv-1")
        assert is_local_id(message.id)
        assert message.task_id == "srv-1"

    async def test_messages_ordered_by_timestamp(self, reconciler, clock):
        clock.advance(minutes=10)
        late = await reconciler.add_message("late", ChatRole.USER)
        clock.advance(minutes=-5)
        early = await reconciler.add_message("early", ChatRole.ASSISTANT)

        assert reconciler.chat_messages == [early, late]

    async def test_notifications_are_idempotent_and_newest_first(self, reconciler):
        first = Notification(id="n1", type=NotificationType.TASK_DUE, title="Due soon")
        second = Notification(id="n2", type=NotificationType.TASK_SHARED, title="Shared")

        assert reconciler.receive_notification(first) is True
        assert reconciler.receive_notification(second) is True
        assert reconciler.receive_notification(first) is False

        assert [n.id for n in reconciler.notifications] == ["n2", "n1"]
        assert reconciler.views(TODAY).unread_notifications == 2

        assert reconciler.mark_notification_read("n1") is True
        assert reconciler.mark_notification_read("missing") is False
        assert reconciler.views(TODAY).unread_notifications == 1


class TestListeners:
    async def test_listener_called_on_each_change(self, reconciler):
        calls = []
        remove = reconciler.add_listener(lambda: calls.append(reconciler.revision))

        task = await reconciler.add({"title": "Observed"})
        await reconciler.toggle_complete(task.id)
        assert calls == sorted(calls)
        assert len(calls) == 2

        remove()
        await reconciler.delete(task.id)
        assert len(calls) == 2

    async def test_failing_listener_does_not_break_mutation(self, reconciler):
        def _boom() -> None:
            raise RuntimeError("listener bug")

        reconciler.add_listener(_boom)
        task = await reconciler.add({"title": "Still works"})
        assert reconciler.get_task(task.id) is not None
