"""Test fixtures package."""

from .factories import (
    ChunkFactory,
    RecordingSessionStore,
    SchedulerFactoryRecorder,
    ScriptedToolScheduler,
    ScriptedTransport,
    TurnFactory,
    network_error,
    quota_error,
)

__all__ = [
    "ChunkFactory",
    "TurnFactory",
    "ScriptedTransport",
    "RecordingSessionStore",
    "ScriptedToolScheduler",
    "SchedulerFactoryRecorder",
    "network_error",
    "quota_error",
]
