"""Background embedding worker: loop, task processor and persisted status."""

from notequeue.worker.processor import TaskOutcome, TaskProcessor
from notequeue.worker.state import WorkerState, WorkerStatus
from notequeue.worker.worker import EmbeddingWorker, WorkerStats

__all__ = [
    "EmbeddingWorker",
    "TaskOutcome",
    "TaskProcessor",
    "WorkerState",
    "WorkerStats",
    "WorkerStatus",
]
