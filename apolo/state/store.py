"""In-memory project/task state and its synchronous mutations.

``ProjectStore`` never talks to the remote store. Each mutation applies at
once so the next read sees it, and returns what the sync coordinator needs
to persist it (``None`` when the mutation was a no-op).
"""
import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from ..schemas import ActivityLog, AppState, Attachment, Project, Task, TaskStatus, User
from ..schemas.task import now_ms
from . import tree
from .positions import Placement, append_position, inside_position, position_at

logger = logging.getLogger(__name__)

COLORS = ["indigo", "emerald", "rose", "amber", "cyan", "violet", "fuchsia"]

TEMP_PREFIX = "tmp-"

PROJECT_FIELDS = {"title", "subtitle", "color", "image_url", "position"}
TASK_FIELDS = {"title", "description", "status", "expanded", "tags", "position"}


def temp_id() -> str:
    """Local id for an entity whose remote insert has not completed."""
    return TEMP_PREFIX + uuid4().hex[:8]


def is_temp_id(value: str) -> bool:
    return value.startswith(TEMP_PREFIX)


def random_color() -> str:
    return random.choice(COLORS)


@dataclass(frozen=True)
class TaskMove:
    project_id: str
    task_id: str
    parent_id: Optional[str]
    position: float


@dataclass(frozen=True)
class TaskChange:
    """A task-level edit, tagged with the project it happened in."""
    project_id: str
    task: Task


class ProjectStore:
    def __init__(self):
        self.state = AppState()
        self.current_user: Optional[User] = None
        self.active_project_id: Optional[str] = None

    # -- reads ---------------------------------------------------------------

    @property
    def projects(self) -> List[Project]:
        return self.state.projects

    def get_project(self, project_id: Optional[str]) -> Optional[Project]:
        for project in self.state.projects:
            if project.id == project_id:
                return project
        return None

    @property
    def active_project(self) -> Optional[Project]:
        return self.get_project(self.active_project_id)

    def find_task(self, task_id: str) -> Optional[Task]:
        project = self.active_project
        return tree.find_task(project.tasks, task_id) if project else None

    # -- whole-state ---------------------------------------------------------

    def reset(self, user: Optional[User] = None) -> None:
        self.state = AppState()
        self.current_user = user
        self.active_project_id = None

    def replace_projects(self, projects: List[Project]) -> None:
        self.state = AppState(projects=projects)

    def set_active_project(self, project_id: Optional[str]) -> None:
        self.active_project_id = project_id

    def _modify_project(self, project_id: str, fn: Callable[[Project], Project]) -> bool:
        found = False
        projects = []
        for project in self.state.projects:
            if project.id == project_id:
                project = fn(project)
                found = True
            projects.append(project)
        if found:
            self.state = AppState(projects=projects)
        return found

    def _modify_tasks(self, project_id: str, fn: Callable[[List[Task]], List[Task]]) -> bool:
        return self._modify_project(
            project_id, lambda project: project.model_copy(update={"tasks": fn(project.tasks)})
        )

    def _task_context(self, operation: str) -> Optional[Project]:
        """The project a task mutation applies to, or None to skip it."""
        project = self.active_project
        if self.current_user is None or project is None:
            logger.debug("No active user/project; skipping %s", operation)
            return None
        return project

    # -- projects ------------------------------------------------------------

    def add_project(self, title: str, subtitle: str = "", *, project_id: Optional[str] = None,
                    color: Optional[str] = None) -> Optional[Project]:
        if self.current_user is None:
            logger.debug("No active user; skipping add_project")
            return None
        project = Project(
            id=project_id or temp_id(),
            title=title,
            subtitle=subtitle,
            color=color or random_color(),
            position=append_position(self.state.projects),
            created_by=self.current_user.id,
            created_at=now_ms(),
        )
        self.state = AppState(projects=self.state.projects + [project])
        return project

    def update_project(self, project_id: str, **fields) -> Optional[Project]:
        unknown = set(fields) - PROJECT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update project fields: {sorted(unknown)}")
        if self.current_user is None:
            return None
        if not self._modify_project(project_id, lambda p: p.model_copy(update=fields)):
            return None
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> Optional[Tuple[Project, int]]:
        """Remove a project; returns it with its index for a later rollback."""
        if self.current_user is None:
            return None
        for index, project in enumerate(self.state.projects):
            if project.id == project_id:
                break
        else:
            return None
        projects = list(self.state.projects)
        del projects[index]
        self.state = AppState(projects=projects)
        if self.active_project_id == project_id:
            self.active_project_id = None
        return project, index

    def restore_project(self, project: Project, index: int) -> None:
        if self.get_project(project.id) is not None:
            return
        projects = list(self.state.projects)
        projects.insert(min(index, len(projects)), project)
        self.state = AppState(projects=projects)

    def discard_project(self, project_id: str) -> None:
        self.state = AppState(projects=[p for p in self.state.projects if p.id != project_id])
        if self.active_project_id == project_id:
            self.active_project_id = None

    def move_project(self, dragged_id: str, target_id: str) -> Optional[Project]:
        """Reinsert ``dragged_id`` at the target's index and give it a new key."""
        if self.current_user is None or dragged_id == target_id:
            return None
        projects = list(self.state.projects)
        ids = [p.id for p in projects]
        if dragged_id not in ids or target_id not in ids:
            return None
        target_index = ids.index(target_id)
        dragged = projects.pop(ids.index(dragged_id))

        moved = dragged.model_copy(update={"position": position_at(projects, target_index)})
        projects.insert(target_index, moved)
        self.state = AppState(projects=projects)
        return moved

    def replace_project_id(self, old_id: str, new_id: str) -> None:
        self._modify_project(old_id, lambda p: p.model_copy(update={"id": new_id}))
        if self.active_project_id == old_id:
            self.active_project_id = new_id

    # -- tasks ---------------------------------------------------------------

    def add_task(self, parent_id: Optional[str], title: str, *,
                 task_id: Optional[str] = None) -> Optional[TaskChange]:
        project = self._task_context("add_task")
        if project is None:
            return None
        if parent_id is None:
            siblings = project.tasks
        else:
            parent = tree.find_task(project.tasks, parent_id)
            if parent is None:
                return None
            siblings = parent.subtasks

        task = Task(
            id=task_id or temp_id(),
            title=title,
            position=append_position(siblings),
            created_by=self.current_user.id,
            created_at=now_ms(),
        )
        if parent_id is None:
            self._modify_tasks(project.id, lambda tasks: tasks + [task])
        else:
            self._modify_tasks(project.id, lambda tasks: tree.add_subtask(tasks, parent_id, task))
        return TaskChange(project.id, task)

    def update_task(self, task_id: str, **fields) -> Optional[TaskChange]:
        unknown = set(fields) - TASK_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")
        if "status" in fields:
            fields["status"] = TaskStatus(fields["status"])
        return self._update_task(task_id, "update_task", lambda t: t.model_copy(update=fields))

    def _update_task(self, task_id: str, operation: str, fn: Callable[[Task], Task]) -> Optional[TaskChange]:
        project = self._task_context(operation)
        if project is None or tree.find_task(project.tasks, task_id) is None:
            return None
        self._modify_tasks(project.id, lambda tasks: tree.update_at(tasks, task_id, fn))
        return TaskChange(project.id, tree.find_task(self.active_project.tasks, task_id))

    def delete_task(self, task_id: str) -> Optional[TaskChange]:
        """Remove a task with its subtree; the change carries the removed node."""
        project = self._task_context("delete_task")
        if project is None:
            return None
        task = tree.find_task(project.tasks, task_id)
        if task is None:
            return None
        self._modify_tasks(project.id, lambda tasks: tree.delete_at(tasks, task_id))
        return TaskChange(project.id, task)

    def toggle_task_status(self, task_id: str) -> Optional[TaskChange]:
        current = self.find_task(task_id)
        if current is None:
            return None
        return self.update_task(task_id, status=current.status.toggled())

    def toggle_expand(self, task_id: str) -> Optional[TaskChange]:
        return self._update_task(
            task_id, "toggle_expand", lambda t: t.model_copy(update={"expanded": not t.expanded})
        )

    def move_task(self, dragged_id: str, target_id: str, placement) -> Optional[TaskMove]:
        """Drag-and-drop within the active project, across parents if needed.

        Moving a task onto itself or into its own subtree is ignored.
        """
        placement = Placement(placement)
        project = self._task_context("move_task")
        if project is None or dragged_id == target_id:
            return None
        dragged = tree.find_task(project.tasks, dragged_id)
        if dragged is None or tree.find_task(project.tasks, target_id) is None:
            return None
        if tree.find_task(dragged.subtasks, target_id) is not None:
            logger.debug("Refusing to move %s into its own subtree", dragged_id)
            return None

        tasks = tree.delete_at(project.tasks, dragged_id)

        if placement is Placement.INSIDE:
            target = tree.find_task(tasks, target_id)
            moved = dragged.model_copy(update={"position": inside_position(target.subtasks)})
            tasks = tree.update_at(
                tasks,
                target_id,
                lambda t: t.model_copy(update={"subtasks": [moved] + t.subtasks, "expanded": True}),
            )
            parent_id = target_id
        else:
            parent_id, siblings, index = tree.locate(tasks, target_id)
            if placement is Placement.AFTER:
                index += 1
            moved = dragged.model_copy(update={"position": position_at(siblings, index)})
            children = siblings[:index] + [moved] + siblings[index:]
            tasks = tree.set_children(tasks, parent_id, children)

        self._modify_tasks(project.id, lambda _: tasks)
        return TaskMove(project.id, dragged_id, parent_id, moved.position)

    def replace_task_id(self, project_id: str, old_id: str, new_id: str) -> None:
        self._modify_tasks(
            project_id, lambda tasks: tree.update_at(tasks, old_id, lambda t: t.model_copy(update={"id": new_id}))
        )

    # -- activity & attachments ----------------------------------------------

    def add_activity(self, task_id: str, content: str, type_) -> Optional[Tuple[TaskChange, ActivityLog]]:
        if self._task_context("add_activity") is None:
            return None
        log = ActivityLog(id=str(uuid4()), type=type_, content=content, created_by=self.current_user.id)
        change = self._update_task(
            task_id, "add_activity", lambda t: t.model_copy(update={"activity": t.activity + [log]})
        )
        return (change, log) if change else None

    def update_activity(self, task_id: str, log_id: str, content: str) -> Optional[TaskChange]:
        def edit(task: Task) -> Task:
            activity = [
                log.model_copy(update={"content": content}) if log.id == log_id else log
                for log in task.activity
            ]
            return task.model_copy(update={"activity": activity})

        return self._update_task(task_id, "update_activity", edit)

    def delete_activity(self, task_id: str, log_id: str) -> Optional[TaskChange]:
        return self._update_task(
            task_id,
            "delete_activity",
            lambda t: t.model_copy(update={"activity": [log for log in t.activity if log.id != log_id]}),
        )

    def add_attachment(self, task_id: str, type_, name: str, url: str) -> Optional[Tuple[TaskChange, Attachment]]:
        if self._task_context("add_attachment") is None:
            return None
        attachment = Attachment(id=str(uuid4()), name=name, type=type_, url=url, created_by=self.current_user.id)
        change = self._update_task(
            task_id,
            "add_attachment",
            lambda t: t.model_copy(update={"attachments": t.attachments + [attachment]}),
        )
        return (change, attachment) if change else None
