"""
Scheduling package for the gateway.

Serializes outbound calls into a single FIFO stream so bursts from many
consumers are absorbed by queuing rather than parallel dispatch.
"""

from .request_queue import QueueItem, RequestScheduler

__all__ = ["QueueItem", "RequestScheduler"]
