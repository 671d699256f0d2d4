"""Replication from the remote worker and the outbound send queue."""

from relaylog.replication.client import Page, TransientUpstreamError, WorkerClient
from relaylog.replication.loop import EventWriter, ReplicationLoop

__all__ = [
    "EventWriter",
    "Page",
    "ReplicationLoop",
    "TransientUpstreamError",
    "WorkerClient",
]
