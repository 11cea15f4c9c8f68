"""Reconciliation engine: work queue, reconciler, leader election and worker pool."""

from hahaha.controller.handler import Action, InvariantViolation, Observation, Plan, ResourceHandler
from hahaha.controller.leader import LeaderElector
from hahaha.controller.manager import ControllerManager, ManagerStatus
from hahaha.controller.queue import QueueShutDown, WorkQueue
from hahaha.controller.reconciler import Reconciler
from hahaha.controller.workers import WorkerPool

__all__ = [
    "Action",
    "ControllerManager",
    "InvariantViolation",
    "LeaderElector",
    "ManagerStatus",
    "Observation",
    "Plan",
    "QueueShutDown",
    "Reconciler",
    "ResourceHandler",
    "WorkQueue",
    "WorkerPool",
]
