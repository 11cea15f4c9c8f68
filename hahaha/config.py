"""Environment-variable configuration loader.

Every setting is read from a ``HAHAHA_*`` variable.  Integers are clamped to
their allowed range, durations use ``<int>(ms|s|m|h)`` and invalid values raise
``ValueError`` so a misconfigured pod fails fast at startup.
"""

from __future__ import annotations

import os
import re
import socket
import uuid

from hahaha.models.config import (
    DEFAULT_LABEL_SELECTOR,
    DEFAULT_LOG_FILTER,
    HahahaConfig,
    HealthConfig,
    LeaderElectionConfig,
    LogConfig,
    QueueConfig,
    WatchConfig,
)
from hahaha.observability.logging import parse_log_filter

_PREFIX = "HAHAHA_"
_DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h)$")
_DURATION_UNITS: dict[str, float] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def parse_duration(value: str) -> float:
    """Convert ``500ms``/``15s``/``5m``/``1h`` into seconds."""
    match = _DURATION_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid duration format: {value!r} (expected <int>ms|s|m|h)")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


def _env(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as err:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {raw!r}") from err
    return max(lo, min(hi, value))


def _env_duration(name: str, default: str, lo: float, hi: float) -> float:
    value = parse_duration(_env(name, default))
    return max(lo, min(hi, value))


def _default_identity() -> str:
    host = os.environ.get("HOSTNAME") or socket.gethostname()
    return f"{host}_{uuid.uuid4().hex[:8]}"


def load_config() -> HahahaConfig:
    """Build a :class:`HahahaConfig` from the process environment."""
    log_filter = _env("LOG", DEFAULT_LOG_FILTER)
    parse_log_filter(log_filter)  # validate early

    health = HealthConfig(port=_env_int("HEALTH_PORT", 8999, 1024, 65535))

    watch = WatchConfig(
        namespace=_env("NAMESPACE", ""),
        label_selector=_env("LABEL_SELECTOR", DEFAULT_LABEL_SELECTOR),
        resync_period_seconds=_env_duration("RESYNC_PERIOD", "5m", 10.0, 86_400.0),
    )

    backoff_base = _env_duration("BACKOFF_BASE", "1s", 0.001, 60.0)
    backoff_max = _env_duration("BACKOFF_MAX", "5m", 1.0, 3_600.0)
    if backoff_max < backoff_base:
        raise ValueError(
            f"{_PREFIX}BACKOFF_MAX ({backoff_max}s) must be >= {_PREFIX}BACKOFF_BASE ({backoff_base}s)"
        )
    queue = QueueConfig(
        workers=_env_int("WORKERS", 4, 1, 64),
        backoff_base_seconds=backoff_base,
        backoff_max_seconds=backoff_max,
        max_permanent_retries=_env_int("MAX_PERMANENT_RETRIES", 5, 0, 100),
        max_requeue_seconds=_env_duration("MAX_REQUEUE", "5m", 1.0, 86_400.0),
        drain_timeout_seconds=_env_duration("DRAIN_TIMEOUT", "15s", 0.0, 300.0),
    )

    lease_duration = _env_duration("LEASE_DURATION", "15s", 1.0, 600.0)
    renew_deadline = _env_duration("RENEW_DEADLINE", "10s", 0.5, 600.0)
    retry_period = _env_duration("RETRY_PERIOD", "2s", 0.1, 60.0)
    if renew_deadline >= lease_duration:
        raise ValueError(
            f"{_PREFIX}RENEW_DEADLINE ({renew_deadline}s) must be shorter than "
            f"{_PREFIX}LEASE_DURATION ({lease_duration}s)"
        )
    if retry_period >= renew_deadline:
        raise ValueError(
            f"{_PREFIX}RETRY_PERIOD ({retry_period}s) must be shorter than "
            f"{_PREFIX}RENEW_DEADLINE ({renew_deadline}s)"
        )
    leader_election = LeaderElectionConfig(
        enabled=_env_bool("LEADER_ELECTION_ENABLED", True),
        lease_name=_env("LEASE_NAME", "hahaha"),
        lease_namespace=_env("LEASE_NAMESPACE", os.environ.get("POD_NAMESPACE", "default")),
        identity=_env("IDENTITY", "") or _default_identity(),
        lease_duration_seconds=lease_duration,
        renew_deadline_seconds=renew_deadline,
        retry_period_seconds=retry_period,
    )

    return HahahaConfig(
        log=LogConfig(filter=log_filter),
        health=health,
        watch=watch,
        queue=queue,
        leader_election=leader_election,
    )
