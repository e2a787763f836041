"""Priority task queue with attempt tracking and caller-driven requeue."""

from shipyard.queue.models import TaskCreate, TaskStatus, TaskType, TaskView
from shipyard.queue.repository import TaskQueueRepository

__all__ = [
    "TaskCreate",
    "TaskQueueRepository",
    "TaskStatus",
    "TaskType",
    "TaskView",
]
