from .positions import Placement
from .store import ProjectStore, TaskChange, TaskMove
from .sync import CommitResult, SyncCoordinator
from .loader import Loader, LoadResult
from .workspace import Pending, Workspace

__all__ = [
    "CommitResult",
    "Loader",
    "LoadResult",
    "Pending",
    "Placement",
    "ProjectStore",
    "SyncCoordinator",
    "TaskChange",
    "TaskMove",
    "Workspace",
]
