"""Replay of captured traffic from file."""

from canhook.replay.importer import ReplayFrame, decode_replay, decode_row, read_replay_csv
from canhook.replay.player import ReplayPlayer, ReplayState
from canhook.replay.scheduler import AsyncioScheduler, ScheduledCall, Scheduler

__all__ = [
    "ReplayFrame",
    "decode_replay",
    "decode_row",
    "read_replay_csv",
    "ReplayPlayer",
    "ReplayState",
    "AsyncioScheduler",
    "ScheduledCall",
    "Scheduler",
]
