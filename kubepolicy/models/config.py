"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ControllerConfig:
    """Reconciliation loop configuration."""

    batch_window: float = 0.0  # seconds of quiescence before reconciling; 0 = every event
    max_batch: int = 100
    queue_size: int = 1000
    resync_period: float = 600.0  # seconds; 0 disables periodic resync


@dataclass
class TopologyConfig:
    """Which Gateway API sections become targetables of their own."""

    expand_listeners: bool = True
    expand_rules: bool = True
    expand_ports: bool = True


@dataclass(frozen=True)
class PolicyKindConfig:
    """A generic policy kind to observe: ``group/version/plural/Kind=strategy``."""

    group: str
    version: str
    plural: str
    kind: str
    strategy: str = "atomic"


@dataclass
class WatchConfig:
    """Observation source configuration."""

    namespace: str = ""  # empty = all namespaces
    label_selector: str = ""
    max_retries: int = 5
    backend_tls_policies: bool = False
    policy_kinds: list[PolicyKindConfig] = field(default_factory=list)


@dataclass
class APIConfig:
    """REST API configuration."""

    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubePolicyConfig:
    """Top-level KubePolicy configuration."""

    controller: ControllerConfig = field(default_factory=ControllerConfig)
    topology: TopologyConfig = field(default_factory=TopologyConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
