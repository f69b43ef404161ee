"""Error taxonomy for the liveness heartbeat subsystem."""

from __future__ import annotations


class HealthError(Exception):
    """Base class for every heartbeat failure."""


class HeartbeatStartupError(HealthError):
    """The heartbeat endpoint could not be created, bound or located."""


class HeartbeatAcceptError(HealthError):
    """The serve loop can no longer accept connections."""


class HeartbeatQueryError(HealthError):
    """A liveness query failed on the probing side."""


class MalformedReplyError(HeartbeatQueryError):
    """The heartbeat reply did not carry a full timestamp."""


class HeartbeatNotInitializedError(HealthError):
    """The file heartbeat was touched before it was created."""
