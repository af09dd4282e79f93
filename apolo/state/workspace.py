"""One client session: state, sync and loading wired together.

Create a single ``Workspace`` per session and hand it to whatever needs the
state. Every mutation is two-phase:

  1. apply: ``ProjectStore`` changes memory synchronously;
  2. commit: a ``SyncCoordinator`` coroutine scheduled on the running loop.

Mutations return a ``Pending`` holding the applied value and the scheduled
commit, which callers may await or ignore. A ``Workspace`` must be driven
from inside a running event loop.
"""
import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Set

from pydantic import ValidationError

from ..remote import RemoteError, Subscription, TableStore
from ..schemas import Notification, Project, Task, User
from . import tree
from .loader import Loader, invite_from_url
from .store import ProjectStore
from .sync import CommitResult, Notifier, SyncCoordinator

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {"name", "avatar_url"}


class Pending:
    """Result of a mutation: the applied value plus its in-flight commit."""

    def __init__(self, value: Any = None, commit: Optional["asyncio.Task[CommitResult]"] = None):
        self.value = value
        self.commit = commit

    @property
    def applied(self) -> bool:
        return self.commit is not None

    async def result(self) -> Optional[CommitResult]:
        """Wait for the commit; None when the mutation was a no-op."""
        if self.commit is None:
            return None
        return await self.commit


class Workspace:
    def __init__(self, remote: TableStore, notify: Optional[Notifier] = None):
        self.remote = remote
        self.store = ProjectStore()
        self.sync = SyncCoordinator(self.store, remote, notify)
        self.loader = Loader(remote)
        self.users: List[User] = []
        self.notifications: List[Notification] = []
        self.is_loading = False
        self.invite_url: Optional[str] = None
        self._load_generation = 0
        self._dirty_profile_fields: Set[str] = set()
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()

    # -- reads ---------------------------------------------------------------

    @property
    def current_user(self) -> Optional[User]:
        return self.store.current_user

    @property
    def projects(self) -> List[Project]:
        return self.store.projects

    @property
    def active_project(self) -> Optional[Project]:
        return self.store.active_project

    @property
    def is_syncing(self) -> bool:
        return self.sync.is_syncing

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.is_read)

    def find_task(self, task_id: str) -> Optional[Task]:
        return self.store.find_task(task_id)

    def search(self, query: str) -> List[Task]:
        project = self.active_project
        return tree.search_tasks(project.tasks, query) if project else []

    def set_active_project(self, project_id: Optional[str]) -> None:
        self.store.set_active_project(project_id)

    # -- scheduling ----------------------------------------------------------

    def _dispatch(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=getattr(coro, "__qualname__", None))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task %s crashed", task.get_name(), exc_info=task.exception())

    def _pending(self, value, make_commit) -> Pending:
        if value is None:
            return Pending()
        return Pending(value, self._dispatch(make_commit()))

    async def drain(self) -> None:
        """Wait until every scheduled commit and load has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- identity & loading --------------------------------------------------

    def set_identity(self, user: Optional[User], invite_url: Optional[str] = None) -> Optional[asyncio.Task]:
        """Switch the acting user; clears all state and starts a full load."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        previous = self.current_user
        self.store.reset(user)
        self.sync.reset()
        self.users = []
        self.notifications = []
        if previous is None or user is None or previous.id != user.id:
            self._dirty_profile_fields.clear()
        self.invite_url = invite_url
        if user is None:
            self._load_generation += 1
            return None

        self._subscription = self.remote.subscribe("notifications", {"user_id": user.id}, self._on_notification)
        return self._dispatch(self.reload())

    def logout(self) -> None:
        self.set_identity(None)

    def reload(self) -> Awaitable[bool]:
        """Fetch and install the current user's state; resolves False if it failed.

        Each call supersedes earlier loads: a load that completes after a newer
        one was started is discarded.
        """
        self._load_generation += 1
        return self._load(self.current_user, self._load_generation)

    async def _load(self, user: Optional[User], generation: int) -> bool:
        if user is None:
            return False
        self.is_loading = True
        try:
            result = await self.loader.load(user)
        except (RemoteError, ValidationError):
            logger.error("Critical error fetching data", exc_info=True, extra={"user_id": user.id})
            return False
        finally:
            if generation == self._load_generation:
                self.is_loading = False

        if generation != self._load_generation:
            logger.info("Discarding superseded load", extra={"user_id": user.id})
            return False

        active_id = self.store.active_project_id
        self.store.replace_projects(result.projects)
        if self.store.get_project(active_id) is None:
            self.store.set_active_project(None)
        if result.notifications is not None:
            self.notifications = result.notifications
        if result.users is not None:
            self._apply_profiles(result.users)

        invite = invite_from_url(self.invite_url)
        if invite and self.store.get_project(invite) is None:
            self.invite_url = None
            await self.join_project(invite)
        return True

    def _apply_profiles(self, users: List[User]) -> None:
        """Refresh the user list and the cached current user from profiles.

        Fields edited locally and not yet committed are left alone.
        """
        current = self.current_user
        mine = next((u for u in users if u.id == current.id), None)
        if mine is not None:
            fresh = {name: getattr(mine, name) for name in PROFILE_FIELDS - self._dirty_profile_fields}
            current = current.model_copy(update=fresh)
            self.store.current_user = current
        self.users = [current if u.id == current.id else u for u in users]

    def _on_notification(self, row: dict) -> None:
        notification = Notification.model_validate(row)
        if any(n.id == notification.id for n in self.notifications):
            return
        self.notifications = [notification] + self.notifications

    async def join_project(self, project_id: str) -> CommitResult:
        user = self.current_user
        if user is None:
            return CommitResult(ok=False)
        result = await self.sync.join_project(user.id, project_id)
        if result.ok and result.value:
            await self.reload()
        return result

    def update_current_user(self, **fields) -> Pending:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        user = self.current_user
        if user is None:
            return Pending()
        updated = user.model_copy(update=fields)
        self.store.current_user = updated
        self.users = [updated if u.id == updated.id else u for u in self.users]
        self._dirty_profile_fields.update(fields)

        async def commit() -> CommitResult:
            result = await self.sync.update_profile(updated)
            if result.ok and self.current_user is not None and self.current_user.id == updated.id:
                self._dirty_profile_fields.difference_update(fields)
            return result

        return Pending(updated, self._dispatch(commit()))

    def mark_notification_read(self, notification_id: str) -> Pending:
        if not any(n.id == notification_id for n in self.notifications):
            return Pending()
        self.notifications = [
            n.model_copy(update={"is_read": True}) if n.id == notification_id else n
            for n in self.notifications
        ]
        return Pending(notification_id, self._dispatch(self.sync.mark_notification_read(notification_id)))

    # -- projects ------------------------------------------------------------

    def add_project(self, title: str, subtitle: str = "") -> Pending:
        project = self.store.add_project(title, subtitle)
        return self._pending(project, lambda: self.sync.add_project(project))

    def update_project(self, project_id: str, **fields) -> Pending:
        project = self.store.update_project(project_id, **fields)
        return self._pending(project, lambda: self.sync.update_project(project_id, fields))

    def delete_project(self, project_id: str) -> Pending:
        removed = self.store.delete_project(project_id)
        if removed is None:
            return Pending()
        project, index = removed
        return Pending(project, self._dispatch(self.sync.delete_project(project, index)))

    def move_project(self, dragged_id: str, target_id: str) -> Pending:
        moved = self.store.move_project(dragged_id, target_id)
        return self._pending(moved, lambda: self.sync.move_project(moved))

    # -- tasks ---------------------------------------------------------------

    def add_task(self, parent_id: Optional[str], title: str) -> Pending:
        change = self.store.add_task(parent_id, title)
        return self._pending(change and change.task, lambda: self.sync.add_task(change, parent_id))

    def update_task(self, task_id: str, **fields) -> Pending:
        change = self.store.update_task(task_id, **fields)
        return self._pending(change and change.task, lambda: self.sync.update_task(change, fields))

    def delete_task(self, task_id: str) -> Pending:
        change = self.store.delete_task(task_id)
        return self._pending(change and change.task, lambda: self.sync.delete_task(change))

    def toggle_task_status(self, task_id: str) -> Pending:
        change = self.store.toggle_task_status(task_id)
        return self._pending(
            change and change.task,
            lambda: self.sync.update_task(change, {"status": change.task.status}),
        )

    def toggle_expand(self, task_id: str) -> Pending:
        change = self.store.toggle_expand(task_id)
        return self._pending(
            change and change.task,
            lambda: self.sync.update_task(change, {"expanded": change.task.expanded}),
        )

    def move_task(self, dragged_id: str, target_id: str, placement) -> Pending:
        move = self.store.move_task(dragged_id, target_id, placement)
        return self._pending(move, lambda: self.sync.move_task(move))

    # -- activity & attachments ----------------------------------------------

    def add_activity(self, task_id: str, content: str, type_="COMMENT") -> Pending:
        applied = self.store.add_activity(task_id, content, type_)
        if applied is None:
            return Pending()
        change, log = applied
        return Pending(log, self._dispatch(self.sync.add_activity(change, log)))

    def update_activity(self, task_id: str, log_id: str, content: str) -> Pending:
        change = self.store.update_activity(task_id, log_id, content)
        return self._pending(change and change.task, lambda: self.sync.update_activity(change, log_id, content))

    def delete_activity(self, task_id: str, log_id: str) -> Pending:
        change = self.store.delete_activity(task_id, log_id)
        return self._pending(change and change.task, lambda: self.sync.delete_activity(change, log_id))

    def add_attachment(self, task_id: str, type_, name: str, url: str) -> Pending:
        applied = self.store.add_attachment(task_id, type_, name, url)
        if applied is None:
            return Pending()
        change, attachment = applied
        return Pending(attachment, self._dispatch(self.sync.add_attachment(change, attachment)))
