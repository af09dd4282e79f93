"""Build the in-memory state for an identity from the flat remote tables."""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import ValidationError

from ..config import NOTIFICATION_LIMIT
from ..remote import RemoteError, TableStore
from ..schemas import ActivityLog, Attachment, Notification, Project, Task, TaskStatus, User
from .store import random_color

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def to_ms(value: Any) -> Optional[int]:
    """Epoch milliseconds from a datetime, an ISO string or a number."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        # Remote timestamps are naive UTC
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def merge_projects(owned: Iterable[Row], shared: Iterable[Row]) -> List[Row]:
    """Union by project id; the owned row wins when both have it."""
    merged: Dict[str, Row] = {}
    for row in owned:
        merged[row["id"]] = row
    for row in shared:
        merged.setdefault(row["id"], row)
    return list(merged.values())


def sort_projects(rows: Iterable[Row]) -> List[Row]:
    """Position ascending (null as 0), then newest first."""
    return sorted(
        rows,
        key=lambda row: (
            row.get("position") if row.get("position") is not None else 0,
            -(to_ms(row.get("created_at")) or 0),
        ),
    )


def _entries(model, items: Optional[list], task_id: str, field: str) -> list:
    """Validate a stored sequence entry by entry; malformed entries are skipped."""
    entries = []
    for item in items or []:
        try:
            entries.append(model.model_validate(item))
        except ValidationError:
            logger.warning("Skipping malformed %s entry", field, exc_info=True, extra={"task_id": task_id})
    return entries


def task_from_row(row: Row, subtasks: List[Task]) -> Task:
    return Task(
        id=str(row["id"]),
        title=row.get("title") or "",
        description=row.get("description"),
        status=TaskStatus.from_remote(row.get("status")),
        subtasks=subtasks,
        position=row.get("position"),
        expanded=row["expanded"] if row.get("expanded") is not None else True,
        attachments=_entries(Attachment, row.get("attachments"), row["id"], "attachments"),
        activity=_entries(ActivityLog, row.get("activity"), row["id"], "activity"),
        created_by=row.get("created_by"),
        created_at=to_ms(row.get("created_at")),
        tags=row.get("tags") or [],
    )


def build_forest(rows: List[Row]) -> List[Task]:
    """Nest flat task rows by ``parent_id``.

    A row whose parent is not among ``rows`` becomes a root. Child order
    follows row order, so rows should arrive sorted by position.
    """
    by_id = {row["id"]: row for row in rows}
    children: Dict[Optional[str], List[Row]] = defaultdict(list)
    for row in rows:
        parent_id = row.get("parent_id")
        children[parent_id if parent_id in by_id else None].append(row)

    built = 0

    def build(row: Row) -> Task:
        nonlocal built
        built += 1
        return task_from_row(row, [build(child) for child in children[row["id"]]])

    roots = [build(row) for row in children[None]]
    if built != len(rows):
        logger.warning("Dropped %d task rows that form a parent cycle", len(rows) - built)
    return roots


def project_from_row(row: Row, tasks: List[Task]) -> Project:
    return Project(
        id=row["id"],
        title=row.get("title") or "",
        subtitle=row.get("subtitle"),
        color=row.get("color"),
        image_url=row.get("image_url"),
        position=row.get("position"),
        created_by=row.get("owner_id"),
        created_at=to_ms(row.get("created_at")),
        tasks=tasks,
    )


def user_from_profile(row: Row) -> User:
    return User(
        id=row["id"],
        email=row.get("email"),
        name=row.get("full_name") or row.get("email"),
        avatar_url=row.get("avatar_url"),
        avatar_color=f"bg-{random_color()}-500",
    )


def invite_from_url(url: Optional[str]) -> Optional[str]:
    """Project id carried by an invitation link's ``invite`` parameter."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("invite")
    return values[0] if values else None


@dataclass
class LoadResult:
    projects: List[Project]
    users: Optional[List[User]] = None
    notifications: Optional[List[Notification]] = None


class Loader:
    def __init__(self, remote: TableStore, notification_limit: int = NOTIFICATION_LIMIT):
        self.remote = remote
        self.notification_limit = notification_limit

    async def fetch_projects(self, user_id: str) -> List[Row]:
        owned = await self.remote.select(
            "projects", {"owner_id": user_id}, order=[("position", False), ("created_at", True)]
        )

        shared: List[Row] = []
        try:
            memberships = await self.remote.select("project_members", {"user_id": user_id})
            ids = [row["project_id"] for row in memberships]
            if ids:
                shared = await self.remote.select("projects", {"id": ids}, order=[("position", False)])
        except RemoteError:
            logger.warning("Shared projects fetch failed; using owned projects only",
                           exc_info=True, extra={"user_id": user_id})

        return sort_projects(merge_projects(owned, shared))

    async def fetch_tasks(self, project_ids: List[str]) -> List[Row]:
        if not project_ids:
            return []
        rows = await self.remote.select("tasks", {"project_id": project_ids}, order=[("position", False)])
        # Stable re-sort so null positions sort the same on every backend
        return sorted(rows, key=lambda row: row.get("position") if row.get("position") is not None else 0)

    async def fetch_users(self) -> Optional[List[User]]:
        try:
            rows = await self.remote.select("profiles")
        except RemoteError:
            logger.debug("Profiles fetch failed; skipping", exc_info=True)
            return None
        return [user_from_profile(row) for row in rows]

    async def fetch_notifications(self, user_id: str) -> Optional[List[Notification]]:
        try:
            rows = await self.remote.select(
                "notifications", {"user_id": user_id},
                order=[("created_at", True)], limit=self.notification_limit,
            )
        except RemoteError:
            logger.warning("Notifications fetch failed", exc_info=True, extra={"user_id": user_id})
            return None
        return [Notification.model_validate(row) for row in rows]

    async def load(self, user: User) -> LoadResult:
        """Fetch everything visible to ``user``.

        Failures of the project or task queries propagate; profile and
        notification failures leave the corresponding field None.
        """
        project_rows = await self.fetch_projects(user.id)
        task_rows = await self.fetch_tasks([row["id"] for row in project_rows])

        rows_by_project: Dict[str, List[Row]] = defaultdict(list)
        for row in task_rows:
            rows_by_project[row["project_id"]].append(row)
        projects = [project_from_row(row, build_forest(rows_by_project[row["id"]])) for row in project_rows]

        logger.info("Loaded %d projects, %d tasks", len(projects), len(task_rows), extra={"user_id": user.id})
        return LoadResult(
            projects=projects,
            users=await self.fetch_users(),
            notifications=await self.fetch_notifications(user.id),
        )
