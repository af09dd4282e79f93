"""Pure functions over a task forest.

Nothing here mutates its input. Functions that change the forest return a new
list in which only the nodes on the path to the change are rebuilt; every
other node is shared with the input.
"""
from typing import Callable, List, Optional, Tuple

from ..schemas import Project, Task, TaskStatus

TaskUpdater = Callable[[Task], Task]


def find_task(tasks: List[Task], task_id: str) -> Optional[Task]:
    """Depth-first search; returns the first task with ``task_id``."""
    for task in tasks:
        if task.id == task_id:
            return task
        found = find_task(task.subtasks, task_id)
        if found is not None:
            return found
    return None


def locate(
    tasks: List[Task], task_id: str, parent_id: Optional[str] = None
) -> Optional[Tuple[Optional[str], List[Task], int]]:
    """Return ``(parent_id, siblings, index)`` for ``task_id``.

    ``parent_id`` is None for a root task.
    """
    for index, task in enumerate(tasks):
        if task.id == task_id:
            return parent_id, tasks, index
    for task in tasks:
        found = locate(task.subtasks, task_id, task.id)
        if found is not None:
            return found
    return None


def update_at(tasks: List[Task], task_id: str, fn: TaskUpdater) -> List[Task]:
    """Replace the task ``task_id`` by ``fn(task)``, rebuilding its ancestors."""
    changed = False
    result = []
    for task in tasks:
        if task.id == task_id:
            task = fn(task)
            changed = True
        elif task.subtasks:
            subtasks = update_at(task.subtasks, task_id, fn)
            if subtasks is not task.subtasks:
                task = task.model_copy(update={"subtasks": subtasks})
                changed = True
        result.append(task)
    return result if changed else tasks


def add_subtask(tasks: List[Task], parent_id: str, new_task: Task) -> List[Task]:
    """Append ``new_task`` under ``parent_id`` and expand the parent."""
    return update_at(
        tasks,
        parent_id,
        lambda parent: parent.model_copy(
            update={"subtasks": parent.subtasks + [new_task], "expanded": True}
        ),
    )


def set_children(tasks: List[Task], parent_id: Optional[str], children: List[Task]) -> List[Task]:
    """Replace the child list of ``parent_id`` (or the roots when None)."""
    if parent_id is None:
        return children
    return update_at(tasks, parent_id, lambda parent: parent.model_copy(update={"subtasks": children}))


def delete_at(tasks: List[Task], task_id: str) -> List[Task]:
    """Detach ``task_id`` and its whole subtree from wherever it sits."""
    changed = False
    result = []
    for task in tasks:
        if task.id == task_id:
            changed = True
            continue
        if task.subtasks:
            subtasks = delete_at(task.subtasks, task_id)
            if subtasks is not task.subtasks:
                task = task.model_copy(update={"subtasks": subtasks})
                changed = True
        result.append(task)
    return result if changed else tasks


def search_tasks(tasks: List[Task], query: str) -> List[Task]:
    """Prune the forest to tasks whose title or description contains ``query``.

    Ancestors of a match are kept so the match stays reachable, and every kept
    node is expanded. Children that do not match are dropped. The result is
    for display only.
    """
    needle = query.lower()
    result = []
    for task in tasks:
        matches = needle in task.title.lower() or (
            task.description is not None and needle in task.description.lower()
        )
        children = search_tasks(task.subtasks, query)
        if matches or children:
            result.append(task.model_copy(update={"subtasks": children, "expanded": True}))
    return result


def iter_ids(tasks: List[Task]):
    for task in tasks:
        yield task.id
        yield from iter_ids(task.subtasks)


def compute_progress(task: Task) -> int:
    """Percentage done; each direct child weighs the same."""
    if not task.subtasks:
        return 100 if task.status is TaskStatus.COMPLETED else 0
    total = sum(compute_progress(sub) for sub in task.subtasks)
    return _round_half_up(total / len(task.subtasks))


def project_progress(project: Project) -> int:
    if not project.tasks:
        return 0
    total = sum(compute_progress(task) for task in project.tasks)
    return _round_half_up(total / len(project.tasks))


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; 12.5 must give 13
    return int(value + 0.5)
