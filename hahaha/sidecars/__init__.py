"""Sidecar shutdown for Job Pods whose main container has finished."""

from hahaha.sidecars.actions import DEFAULT_ACTIONS, ActionType, ShutdownAction, generate
from hahaha.sidecars.events import EventRecorder, EventType
from hahaha.sidecars.handler import SidecarHandler
from hahaha.sidecars.pod import ContainerState, running_sidecars
from hahaha.sidecars.shutdown import Destroyer, SidecarShutdownError

__all__ = [
    "DEFAULT_ACTIONS",
    "ActionType",
    "ContainerState",
    "Destroyer",
    "EventRecorder",
    "EventType",
    "ShutdownAction",
    "SidecarHandler",
    "SidecarShutdownError",
    "generate",
    "running_sidecars",
]
