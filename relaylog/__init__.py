"""
relaylog - durable event logs for a remote chat-message worker.

This package replicates a worker's message history into local files and lets
independent consumers tail them:
- Append-only JSON-line event logs with size-based archive rotation
- Per-peer shards opened lazily next to a global log
- A crash-resumable replication loop with an atomically persisted cursor
- A rotation-aware tailer with follow, once and window delivery modes
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
