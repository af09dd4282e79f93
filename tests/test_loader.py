import asyncio
import logging
from datetime import datetime
from unittest.mock import AsyncMock, patch

from apolo.remote import RemoteError
from apolo.schemas import ActivityType, AttachmentType, TaskStatus
from apolo.state import Loader, Workspace
from apolo.state.loader import build_forest, invite_from_url, merge_projects, sort_projects, to_ms


def test_build_forest_nests_children_under_parents():
    forest = build_forest([
        {"id": "1", "parent_id": None, "title": "Root"},
        {"id": "2", "parent_id": "1", "title": "Child"},
    ])
    assert len(forest) == 1
    assert forest[0].id == "1"
    assert [t.id for t in forest[0].subtasks] == ["2"]


def test_build_forest_fills_defaults():
    (task,) = build_forest([{"id": "1", "title": "Root", "status": "completed", "expanded": None}])
    assert task.status is TaskStatus.COMPLETED
    assert task.expanded is True
    assert task.attachments == []
    assert task.activity == []
    assert task.tags == []


def test_build_forest_promotes_orphans_to_roots():
    forest = build_forest([
        {"id": "1", "parent_id": "ghost", "title": "Orphan"},
        {"id": "2", "parent_id": None, "title": "Root"},
    ])
    assert [t.id for t in forest] == ["1", "2"]


def test_build_forest_drops_parent_cycles(caplog):
    with caplog.at_level(logging.WARNING, logger="apolo"):
        forest = build_forest([
            {"id": "a", "parent_id": "b", "title": "A"},
            {"id": "b", "parent_id": "a", "title": "B"},
            {"id": "c", "parent_id": None, "title": "C"},
        ])
    assert [t.id for t in forest] == ["c"]
    assert "parent cycle" in caplog.text


def test_merge_projects_prefers_owned_rows():
    merged = merge_projects(
        [{"id": "p1", "title": "mine"}],
        [{"id": "p1", "title": "theirs"}, {"id": "p2", "title": "shared"}],
    )
    assert [row["id"] for row in merged] == ["p1", "p2"]
    assert merged[0]["title"] == "mine"


def test_sort_projects_by_position_then_newest():
    rows = sort_projects([
        {"id": "old", "position": None, "created_at": 1000},
        {"id": "first", "position": -5, "created_at": 0},
        {"id": "new", "position": None, "created_at": 2000},
    ])
    assert [row["id"] for row in rows] == ["first", "new", "old"]


def test_to_ms_treats_naive_timestamps_as_utc():
    assert to_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000
    assert to_ms("1970-01-01T00:00:01Z") == 1000
    assert to_ms(None) is None


def test_invite_from_url():
    assert invite_from_url("https://app.example.com/?invite=p-42") == "p-42"
    assert invite_from_url("https://app.example.com/") is None
    assert invite_from_url(None) is None


def test_load_includes_shared_projects(remote, alice, bob, seed):
    async def scenario():
        mine = await seed.project(alice, "Mine", 2)
        shared = await seed.project(bob, "Shared", 1)
        await seed.project(bob, "Private", 0)
        await seed.member(shared, alice)
        root = await seed.task(shared, "root", 1)
        await seed.task(shared, "child", 1, parent=root)

        result = await Loader(remote).load(alice)

        assert [p.id for p in result.projects] == [shared["id"], mine["id"]]
        assert result.projects[0].created_by == bob.id
        assert [t.title for t in result.projects[0].tasks] == ["root"]
        assert [t.title for t in result.projects[0].tasks[0].subtasks] == ["child"]
        assert {u.id for u in result.users} == {alice.id, bob.id}

    asyncio.run(scenario())


def test_shared_fetch_failure_falls_back_to_owned(remote, alice, bob, seed):
    async def scenario():
        mine = await seed.project(alice, "Mine", 1)
        shared = await seed.project(bob, "Shared", 2)
        await seed.member(shared, alice)
        real_select = remote.select

        async def flaky(table, *args, **kwargs):
            if table == "project_members":
                raise RemoteError("permission denied")
            return await real_select(table, *args, **kwargs)

        with patch.object(remote, "select", new=flaky):
            result = await Loader(remote).load(alice)

        assert [p.id for p in result.projects] == [mine["id"]]

    asyncio.run(scenario())


def test_notifications_are_capped_and_newest_first(remote, alice, seed):
    async def scenario():
        for day in (1, 2, 3):
            await seed.notification(alice, f"day {day}", created_at=datetime(2024, 1, day))

        result = await Loader(remote, notification_limit=2).load(alice)

        assert [n.content for n in result.notifications] == ["day 3", "day 2"]

    asyncio.run(scenario())


def test_workspace_load_refreshes_current_user_from_profile(remote, alice):
    async def scenario():
        await remote.update("profiles", {"id": alice.id}, {"full_name": "Alice Liddell"})
        ws = Workspace(remote)
        assert await ws.set_identity(alice)
        assert ws.current_user.name == "Alice Liddell"
        assert not ws.is_loading

    asyncio.run(scenario())


def test_update_current_user_persists_profile(remote, alice):
    async def scenario():
        ws = Workspace(remote)
        await ws.set_identity(alice)

        result = await ws.update_current_user(name="Al").result()

        assert result.ok
        row = await remote.select_one("profiles", {"id": alice.id})
        assert row["full_name"] == "Al"
        # nothing pending anymore, so the next load may overwrite it
        await remote.update("profiles", {"id": alice.id}, {"full_name": "Alice again"})
        await ws.reload()
        assert ws.current_user.name == "Alice again"

    asyncio.run(scenario())


def test_unsaved_profile_edit_survives_reload(remote, alice, messages):
    async def scenario():
        ws = Workspace(remote, notify=messages.append)
        await ws.set_identity(alice)

        with patch.object(remote, "update", AsyncMock(side_effect=RemoteError("down"))):
            result = await ws.update_current_user(name="Local name").result()
        await ws.reload()

        assert not result.ok
        assert ws.current_user.name == "Local name"
        assert next(u for u in ws.users if u.id == alice.id).name == "Local name"
        assert messages == ["Could not save profile: down"]

    asyncio.run(scenario())


def test_invite_link_joins_project_and_reloads(remote, alice, bob, seed):
    async def scenario():
        shared = await seed.project(bob, "Team", 1)
        ws = Workspace(remote)

        await ws.set_identity(alice, invite_url=f"https://app.example.com/?invite={shared['id']}")

        assert [p.id for p in ws.projects] == [shared["id"]]
        assert ws.invite_url is None
        members = await remote.select("project_members", {"user_id": alice.id})
        assert members[0]["role"] == "editor"

        again = await ws.join_project(shared["id"])
        assert again.ok
        assert again.value is False

    asyncio.run(scenario())


def test_failed_reload_keeps_previous_state(remote, alice, seed):
    async def scenario():
        project = await seed.project(alice, "Kept", 1)
        ws = Workspace(remote)
        await ws.set_identity(alice)
        ws.set_active_project(project["id"])

        with patch.object(remote, "select", AsyncMock(side_effect=RemoteError("offline"))):
            assert await ws.reload() is False

        assert [p.id for p in ws.projects] == [project["id"]]
        assert ws.active_project.id == project["id"]
        assert not ws.is_loading

    asyncio.run(scenario())


def test_superseded_load_is_discarded(remote, alice, bob, seed):
    async def scenario():
        await seed.project(alice, "Alice's", 1)
        bobs = await seed.project(bob, "Bob's", 1)
        ws = Workspace(remote)

        first = ws.set_identity(alice)
        second = ws.set_identity(bob)

        assert await first is False
        assert await second is True
        assert ws.current_user.id == bob.id
        assert [p.id for p in ws.projects] == [bobs["id"]]

    asyncio.run(scenario())


def test_notifications_load_stream_and_mark_read(remote, alice, bob, seed):
    async def scenario():
        read = await seed.notification(alice, "old", is_read=True, created_at=datetime(2024, 1, 1))
        unread = await seed.notification(alice, "new", created_at=datetime(2024, 1, 2))
        ws = Workspace(remote)
        await ws.set_identity(alice)

        assert [n.id for n in ws.notifications] == [unread["id"], read["id"]]
        assert ws.unread_count == 1

        pushed = await seed.notification(alice, "live")
        await seed.notification(bob, "not for alice")
        assert [n.id for n in ws.notifications] == [pushed["id"], unread["id"], read["id"]]
        assert ws.unread_count == 2

        await ws.mark_notification_read(unread["id"]).result()
        assert ws.unread_count == 1
        row = await remote.select_one("notifications", {"id": unread["id"]})
        assert row["is_read"] is True

        ws.logout()
        await seed.notification(alice, "after logout")
        assert ws.notifications == []
        assert ws.current_user is None

    asyncio.run(scenario())


def test_search_filters_active_project(remote, alice, seed):
    async def scenario():
        project = await seed.project(alice, "P", 1)
        parent = await seed.task(project, "Errands", 1, expanded=False)
        await seed.task(project, "Buy milk", 1, parent=parent)
        await seed.task(project, "Taxes", 2)
        ws = Workspace(remote)
        await ws.set_identity(alice)

        assert ws.search("milk") == []
        ws.set_active_project(project["id"])
        result = ws.search("milk")

        assert [t.title for t in result] == ["Errands"]
        assert result[0].expanded is True
        assert [t.title for t in result[0].subtasks] == ["Buy milk"]

    asyncio.run(scenario())


def test_task_entries_accept_lowercase_types_and_skip_malformed(caplog):
    row = {
        "id": "t1",
        "title": "T",
        "activity": [
            {"id": "x", "type": "comment", "content": "hi"},
            {"id": "y", "type": "shout", "content": "??"},
            "not an entry",
        ],
        "attachments": [{"id": "a", "name": "Docs", "type": "link", "url": "https://example.com"}, {"id": "b"}],
    }
    with caplog.at_level(logging.WARNING, logger="apolo"):
        (task,) = build_forest([row])

    assert [log.id for log in task.activity] == ["x"]
    assert task.activity[0].type is ActivityType.COMMENT
    assert [a.id for a in task.attachments] == ["a"]
    assert task.attachments[0].type is AttachmentType.LINK
    assert "Skipping malformed activity entry" in caplog.text


def test_workspace_survives_malformed_activity(remote, alice, seed):
    async def scenario():
        project = await seed.project(alice, "P", 1)
        await seed.task(project, "t", 1, activity=[{"id": "x", "type": "comment", "content": "hi"}])
        ws = Workspace(remote)

        assert await ws.set_identity(alice)

        ws.set_active_project(project["id"])
        (task,) = ws.active_project.tasks
        assert task.activity[0].content == "hi"

    asyncio.run(scenario())


def test_invalid_rows_fail_the_load_without_touching_state(remote, alice, seed):
    async def scenario():
        project = await seed.project(alice, "Kept", 1)
        ws = Workspace(remote)
        await ws.set_identity(alice)
        real_select = remote.select

        async def corrupt(table, *args, **kwargs):
            rows = await real_select(table, *args, **kwargs)
            if table == "projects":
                rows = [{**row, "position": "not a number"} for row in rows]
            return rows

        with patch.object(remote, "select", new=corrupt):
            assert await ws.reload() is False

        assert [p.id for p in ws.projects] == [project["id"]]
        assert not ws.is_loading

    asyncio.run(scenario())
