"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kubepolicy.machinery.merge import STRATEGIES
from kubepolicy.models.config import (
    APIConfig,
    ControllerConfig,
    KubePolicyConfig,
    LogConfig,
    PolicyKindConfig,
    TopologyConfig,
    WatchConfig,
)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}
_POLICY_KIND_RE = re.compile(
    r"^(?P<group>[a-z0-9.-]+)/(?P<version>[a-z0-9]+)/(?P<plural>[a-z0-9-]+)/(?P<kind>[A-Za-z0-9]+)$"
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEPOLICY_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float = 0.0) -> float:
    return max(float(_env(key, str(default))), min_val)


def parse_duration(value: str) -> float:
    """Parse ``<n>(s|m|h)`` into seconds."""
    match = re.match(r"^([0-9]+)(s|m|h)$", value)
    if not match:
        raise ValueError(f"Invalid duration format: {value}")
    return float(int(match.group(1)) * _DURATION_UNITS[match.group(2)])


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def parse_policy_kinds(value: str) -> list[PolicyKindConfig]:
    """Parse a comma separated list of ``group/version/plural/Kind[=strategy]`` entries."""
    kinds = []
    for entry in filter(None, (part.strip() for part in value.split(","))):
        path, _, strategy = entry.partition("=")
        match = _POLICY_KIND_RE.match(path.strip())
        if not match:
            raise ValueError(f"Invalid policy kind: {entry}. Expected group/version/plural/Kind=strategy")
        strategy = strategy.strip() or "atomic"
        if strategy not in STRATEGIES:
            raise ValueError(f"Invalid merge strategy for {path}: {strategy}. Must be one of {sorted(STRATEGIES)}")
        kinds.append(PolicyKindConfig(strategy=strategy, **match.groupdict()))
    return kinds


def load_config() -> KubePolicyConfig:
    """Load configuration from KUBEPOLICY_* environment variables."""
    return KubePolicyConfig(
        controller=ControllerConfig(
            batch_window=_env_float("CONTROLLER_BATCH_WINDOW", 0.0),
            max_batch=_env_int("CONTROLLER_MAX_BATCH", 100, min_val=1, max_val=10000),
            queue_size=_env_int("CONTROLLER_QUEUE_SIZE", 1000, min_val=10, max_val=100000),
            resync_period=parse_duration(_env("CONTROLLER_RESYNC_PERIOD", "10m")),
        ),
        topology=TopologyConfig(
            expand_listeners=_env_bool("TOPOLOGY_EXPAND_LISTENERS", True),
            expand_rules=_env_bool("TOPOLOGY_EXPAND_RULES", True),
            expand_ports=_env_bool("TOPOLOGY_EXPAND_PORTS", True),
        ),
        watch=WatchConfig(
            namespace=_env("WATCH_NAMESPACE", ""),
            label_selector=_env("WATCH_LABEL_SELECTOR", ""),
            max_retries=_env_int("WATCH_MAX_RETRIES", 5, min_val=0, max_val=20),
            backend_tls_policies=_env_bool("WATCH_BACKEND_TLS_POLICIES", False),
            policy_kinds=parse_policy_kinds(_env("WATCH_POLICY_KINDS", "")),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
