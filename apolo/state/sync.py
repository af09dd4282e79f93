"""Commit phase of every mutation: persist an already-applied change.

Failure policy:
  - project create/delete: the local change is rolled back and the user is
    notified.
  - everything else (task edits, moves, activity, attachments): the error is
    logged and the local state is kept as is.

Entities created locally carry a temporary id until their insert returns.
Writes that reference such an id wait for that insert and use the remote id.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..remote import RemoteError, TableStore, UniqueViolation
from ..schemas import ActivityLog, Attachment, Project, TaskStatus, User
from .store import ProjectStore, TaskChange, TaskMove
from .tree import iter_ids

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


def log_notifier(message: str) -> None:
    logger.error("User notification: %s", message)


@dataclass(frozen=True)
class CommitResult:
    ok: bool
    value: Any = None
    error: Optional[Exception] = None


class SyncCoordinator:
    def __init__(self, store: ProjectStore, remote: TableStore, notify: Optional[Notifier] = None):
        self.store = store
        self.remote = remote
        self.notify = notify or log_notifier
        self._syncing = 0
        self._aliases: Dict[str, Optional[str]] = {}
        self._pending_inserts: Dict[str, asyncio.Future] = {}

    @property
    def is_syncing(self) -> bool:
        """True while a project create/delete is in flight."""
        return self._syncing > 0

    # -- temporary ids -------------------------------------------------------

    def reset(self) -> None:
        """Forget finished temporary-id substitutions; in-flight inserts stay tracked."""
        self._aliases.clear()

    def _begin_insert(self, local_id: str) -> None:
        self._pending_inserts[local_id] = asyncio.get_running_loop().create_future()

    def _end_insert(self, local_id: str, remote_id: Optional[str]) -> None:
        self._aliases[local_id] = remote_id
        future = self._pending_inserts.pop(local_id, None)
        if future is not None and not future.done():
            future.set_result(remote_id)

    async def resolve(self, local_id: Optional[str]) -> Optional[str]:
        """Remote id for ``local_id``, waiting for its insert if in flight."""
        if local_id is None:
            return None
        future = self._pending_inserts.get(local_id)
        if future is not None:
            remote_id = await future
        else:
            remote_id = self._aliases.get(local_id, local_id)
        if remote_id is None:
            raise RemoteError(f"{local_id} was never persisted")
        return remote_id

    async def _keep_on_failure(self, operation: str, write, **context) -> CommitResult:
        try:
            value = await write()
        except RemoteError as exc:
            logger.error("%s failed; keeping local state", operation, exc_info=True,
                         extra={"operation": operation, **context})
            return CommitResult(ok=False, error=exc)
        return CommitResult(ok=True, value=value)

    # -- projects ------------------------------------------------------------

    def add_project(self, project: Project) -> Awaitable[CommitResult]:
        """Start persisting a new project; tracking begins before the first await."""
        self._syncing += 1
        self._begin_insert(project.id)
        return self._insert_project(project)

    async def _insert_project(self, project: Project) -> CommitResult:
        remote_id = None
        try:
            row = await self.remote.insert("projects", {
                "owner_id": project.created_by,
                "title": project.title,
                "subtitle": project.subtitle,
                "color": project.color,
                "image_url": project.image_url,
                "position": project.position,
            })
            remote_id = row["id"]
            self.store.replace_project_id(project.id, remote_id)
            return CommitResult(ok=True, value=remote_id)
        except RemoteError as exc:
            logger.error("Error adding project", exc_info=True,
                         extra={"project_id": project.id, "operation": "add_project"})
            self.store.discard_project(project.id)
            self.notify(f"Could not save project: {exc.message}")
            return CommitResult(ok=False, error=exc)
        finally:
            self._end_insert(project.id, remote_id)
            self._syncing -= 1

    def delete_project(self, project: Project, index: int) -> Awaitable[CommitResult]:
        self._syncing += 1
        return self._delete_project(project, index)

    async def _delete_project(self, project: Project, index: int) -> CommitResult:
        try:
            try:
                project_id = await self.resolve(project.id)
            except RemoteError:
                # Its insert failed, so there is no remote row and nothing to restore
                logger.info("Project was never saved; nothing to delete",
                            extra={"project_id": project.id, "operation": "delete_project"})
                return CommitResult(ok=True)
            await self.remote.delete("projects", {"id": project_id})
            return CommitResult(ok=True)
        except RemoteError as exc:
            logger.error("Error deleting project", exc_info=True,
                         extra={"project_id": project.id, "operation": "delete_project"})
            self.store.restore_project(project, index)
            self.notify(f"Could not delete project: {exc.message}")
            return CommitResult(ok=False, error=exc)
        finally:
            self._syncing -= 1

    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> CommitResult:
        async def write():
            remote_id = await self.resolve(project_id)
            await self.remote.update("projects", {"id": remote_id}, dict(fields))

        return await self._keep_on_failure("update_project", write, project_id=project_id)

    async def move_project(self, project: Project) -> CommitResult:
        return await self.update_project(project.id, {"position": project.position})

    # -- tasks ---------------------------------------------------------------

    def add_task(self, change: TaskChange, parent_id: Optional[str]) -> Awaitable[CommitResult]:
        self._begin_insert(change.task.id)
        return self._insert_task(change, parent_id)

    async def _insert_task(self, change: TaskChange, parent_id: Optional[str]) -> CommitResult:
        task = change.task
        remote_id = None

        async def write():
            nonlocal remote_id
            project_id = await self.resolve(change.project_id)
            row = await self.remote.insert("tasks", {
                "project_id": project_id,
                "parent_id": await self.resolve(parent_id),
                "title": task.title,
                "description": task.description,
                "status": task.status.to_remote(),
                "position": task.position,
                "expanded": task.expanded,
                "created_by": task.created_by,
            })
            remote_id = row["id"]
            self.store.replace_task_id(project_id, task.id, remote_id)
            return remote_id

        try:
            return await self._keep_on_failure("add_task", write, task_id=task.id)
        finally:
            self._end_insert(task.id, remote_id)

    async def update_task(self, change: TaskChange, fields: Dict[str, Any]) -> CommitResult:
        values = dict(fields)
        if "status" in values:
            values["status"] = TaskStatus(values["status"]).to_remote()

        async def write():
            remote_id = await self.resolve(change.task.id)
            await self.remote.update("tasks", {"id": remote_id}, values)

        return await self._keep_on_failure("update_task", write, task_id=change.task.id)

    async def delete_task(self, change: TaskChange) -> CommitResult:
        async def write():
            remote_ids: List[str] = []
            for local_id in iter_ids([change.task]):
                try:
                    remote_ids.append(await self.resolve(local_id))
                except RemoteError:
                    # Never reached the remote store; nothing to delete
                    continue
            if remote_ids:
                await self.remote.delete("tasks", {"id": remote_ids})

        return await self._keep_on_failure("delete_task", write, task_id=change.task.id)

    async def move_task(self, move: TaskMove) -> CommitResult:
        async def write():
            remote_id = await self.resolve(move.task_id)
            await self.remote.update("tasks", {"id": remote_id}, {
                "parent_id": await self.resolve(move.parent_id),
                "position": move.position,
            })

        return await self._keep_on_failure("move_task", write, task_id=move.task_id)

    # -- append-only sequences -----------------------------------------------

    async def _rewrite_sequence(self, task_id: str, field: str, fn: Callable[[list], list]) -> None:
        """Read the whole sequence, edit it, write it back (last write wins)."""
        remote_id = await self.resolve(task_id)
        row = await self.remote.select_one("tasks", {"id": remote_id})
        if row is None:
            raise RemoteError(f"Task {remote_id} not found")
        await self.remote.update("tasks", {"id": remote_id}, {field: fn(row.get(field) or [])})

    async def add_activity(self, change: TaskChange, log: ActivityLog) -> CommitResult:
        entry = log.model_dump(mode="json")
        return await self._keep_on_failure(
            "add_activity",
            lambda: self._rewrite_sequence(change.task.id, "activity", lambda current: current + [entry]),
            task_id=change.task.id,
        )

    async def update_activity(self, change: TaskChange, log_id: str, content: str) -> CommitResult:
        def edit(current: list) -> list:
            return [{**item, "content": content} if item.get("id") == log_id else item for item in current]

        return await self._keep_on_failure(
            "update_activity",
            lambda: self._rewrite_sequence(change.task.id, "activity", edit),
            task_id=change.task.id,
        )

    async def delete_activity(self, change: TaskChange, log_id: str) -> CommitResult:
        return await self._keep_on_failure(
            "delete_activity",
            lambda: self._rewrite_sequence(
                change.task.id, "activity", lambda current: [i for i in current if i.get("id") != log_id]
            ),
            task_id=change.task.id,
        )

    async def add_attachment(self, change: TaskChange, attachment: Attachment) -> CommitResult:
        entry = attachment.model_dump(mode="json")
        return await self._keep_on_failure(
            "add_attachment",
            lambda: self._rewrite_sequence(change.task.id, "attachments", lambda current: current + [entry]),
            task_id=change.task.id,
        )

    # -- profile, membership, notifications -----------------------------------

    async def update_profile(self, user: User) -> CommitResult:
        """Upsert the user's profile row from the cached user."""
        values = {
            "full_name": user.name,
            "avatar_url": user.avatar_url,
            "updated_at": datetime.utcnow(),
        }

        async def write():
            if await self.remote.select_one("profiles", {"id": user.id}) is None:
                await self.remote.insert("profiles", {"id": user.id, "email": user.email, **values})
            else:
                await self.remote.update("profiles", {"id": user.id}, values)

        result = await self._keep_on_failure("update_profile", write, user_id=user.id)
        if not result.ok:
            self.notify(f"Could not save profile: {result.error.message}")
        return result

    async def join_project(self, user_id: str, project_id: str) -> CommitResult:
        """Add a membership; ``value`` is False when already a member."""
        try:
            await self.remote.insert("project_members", {
                "project_id": project_id,
                "user_id": user_id,
                "role": "editor",
            })
        except UniqueViolation:
            logger.info("Already a member", extra={"project_id": project_id, "user_id": user_id})
            return CommitResult(ok=True, value=False)
        except RemoteError as exc:
            logger.error("Error joining project", exc_info=True,
                         extra={"project_id": project_id, "user_id": user_id})
            self.notify("Could not join the project. Check the invitation link.")
            return CommitResult(ok=False, error=exc)
        return CommitResult(ok=True, value=True)

    async def mark_notification_read(self, notification_id: str) -> CommitResult:
        return await self._keep_on_failure(
            "mark_notification_read",
            lambda: self.remote.update("notifications", {"id": notification_id}, {"is_read": True}),
        )
