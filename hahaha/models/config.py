"""Configuration dataclasses populated by :func:`hahaha.config.load_config`."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_LOG_FILTER = "info,kubernetes_asyncio=warning,aiohttp=warning"
DEFAULT_LABEL_SELECTOR = "nais.io/ginuudan=enabled"


@dataclass(frozen=True)
class LogConfig:
    """``filter`` is a ``level,namespace=level,...`` expression."""

    filter: str = DEFAULT_LOG_FILTER


@dataclass(frozen=True)
class HealthConfig:
    port: int = 8999


@dataclass(frozen=True)
class WatchConfig:
    namespace: str = ""
    label_selector: str = DEFAULT_LABEL_SELECTOR
    resync_period_seconds: float = 300.0


@dataclass(frozen=True)
class QueueConfig:
    workers: int = 4
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    max_permanent_retries: int = 5
    max_requeue_seconds: float = 300.0
    drain_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class LeaderElectionConfig:
    enabled: bool = True
    lease_name: str = "hahaha"
    lease_namespace: str = "default"
    identity: str = ""
    lease_duration_seconds: float = 15.0
    renew_deadline_seconds: float = 10.0
    retry_period_seconds: float = 2.0


@dataclass(frozen=True)
class HahahaConfig:
    log: LogConfig = field(default_factory=LogConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    leader_election: LeaderElectionConfig = field(default_factory=LeaderElectionConfig)
