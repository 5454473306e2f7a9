"""Distributed coordination primitives.

Provides leader election so that only one process enqueues recurring jobs
when several run the scheduler.
"""

from engageiq.distributed.leader import LeaderElection

__all__ = ["LeaderElection"]
