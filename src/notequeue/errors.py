"""Exception hierarchy for the embedding queue.

Collaborator errors carry a ``transient`` flag. The task processor reads it
once to decide between a retryable failure and a terminal one; nothing
downstream inspects exception messages.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base class for all notequeue errors."""


class TaskNotFoundError(QueueError):
    """Raised when a task id does not match any row."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class CollaboratorError(QueueError):
    """Failure raised by an article store, chunker, provider or index.

    Attributes:
        transient: True if a later attempt may succeed
    """

    def __init__(self, message: str, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class ArticleNotFoundError(CollaboratorError):
    """The article referenced by a task no longer exists."""

    def __init__(self, article_id: int) -> None:
        super().__init__(f"Article not found: {article_id}", transient=False)
        self.article_id = article_id


class EmbeddingProviderError(CollaboratorError):
    """The embedding provider rejected or failed a request."""

    def __init__(
        self, message: str, transient: bool = True, status_code: int | None = None
    ) -> None:
        super().__init__(message, transient=transient)
        self.status_code = status_code
