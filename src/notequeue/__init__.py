"""notequeue: background embedding task queue for a markdown notes app.

The package keeps article vector embeddings in sync with article content.
Edits enqueue embedding tasks in a persistent, priority-ordered queue; a
single background worker drains it, retrying transient failures with
exponential backoff and reclaiming tasks left behind by a crash.
"""

__version__ = "0.1.0"
