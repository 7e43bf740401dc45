"""
Agent configuration.

The agent reads configuration from:
    1. Environment variables (AgentConfig.from_env)
    2. A dotted-key options mapping (AgentConfig.from_options), e.g.
       {"interval.system_health": 30, "threshold.low_stock": 15,
        "autoHealing.enabled": False, "features.fraudDetection": True}

Recognized option groups:
    interval.*      Seconds between firings of each concern
    threshold.*     Error rate, response time, ledger delay, discrepancy,
                    low stock, overstock, reorder point, prediction confidence
    autoHealing.*   enabled, restartServices, rollbackTransactions, scaleResources
    features.*      demandForecasting, fraudDetection, costOptimization,
                    resourceOptimization
    breaker.*       failure_threshold, reset_timeout
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional


@dataclass
class IntervalConfig:
    """Seconds between firings of each concern."""

    system_health: float = 30
    blockchain_health: float = 60
    inventory_health: float = 300
    performance: float = 60
    prediction: float = 3600  # 1 hour
    analysis: float = 1800
    recommendation: float = 7200
    auto_recovery: float = 60


@dataclass
class ThresholdConfig:
    """Detection and recommendation thresholds."""

    error_rate: float = 0.05  # fraction of failed requests
    response_time: float = 2000  # ms
    ledger_delay: float = 300  # seconds since last block
    discrepancy: int = 0  # tolerated discrepant items
    low_stock: int = 10
    overstock: int = 1000
    reorder_point: int = 20
    prediction_confidence: float = 0.7
    reorder_confidence: float = 0.8
    pending_transactions: int = 100


@dataclass
class AutoHealingConfig:
    """Which remediation primitives the agent may trigger on its own."""

    enabled: bool = True
    restart_services: bool = True
    rollback_transactions: bool = False
    scale_resources: bool = True


@dataclass
class FeatureToggles:
    """Optimization features."""

    demand_forecasting: bool = True
    fraud_detection: bool = True
    cost_optimization: bool = True
    resource_optimization: bool = True


@dataclass
class BreakerConfig:
    """Circuit breaker settings shared by every monitored component."""

    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds


@dataclass
class AgentConfig:
    """Complete agent configuration."""

    interval: IntervalConfig = field(default_factory=IntervalConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    auto_healing: AutoHealingConfig = field(default_factory=AutoHealingConfig)
    features: FeatureToggles = field(default_factory=FeatureToggles)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)

    # Components probed every system-health cycle
    monitored_components: tuple = ("database", "blockchain", "api", "redis")

    # Failure dedup window (seconds per time bucket)
    dedup_window_seconds: float = 3600

    # Reorder math
    lead_time_days: int = 7

    # Health probe timeout (seconds)
    probe_timeout: float = 5.0

    # How long stop() waits for in-flight bodies before cancelling them
    shutdown_grace_seconds: float = 5.0

    # Endpoints
    database_url: str = ""
    api_health_url: str = "http://localhost:3001/health"
    operations_api_url: str = "http://localhost:8081"
    operations_api_key: Optional[str] = None
    ledger_rpc_url: str = "http://localhost:8545"
    ledger_private_key: Optional[str] = None
    redis_url: Optional[str] = None

    # Dashboard (127.0.0.1 for local only, 0.0.0.0 to expose)
    dashboard_enabled: bool = True
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 9050

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """
        Build configuration from environment variables.

        Group options map to ``OPS_<GROUP>_<OPTION>`` in upper snake case,
        e.g. ``OPS_INTERVAL_SYSTEM_HEALTH=15`` or
        ``OPS_AUTO_HEALING_ROLLBACK_TRANSACTIONS=true``.
        """
        env = os.environ if environ is None else environ

        options: Dict[str, Any] = {}
        for group in ("interval", "threshold", "auto_healing", "features", "breaker"):
            prefix = f"OPS_{group.upper()}_"
            for key, value in env.items():
                if key.startswith(prefix):
                    options[f"{group}.{key[len(prefix):].lower()}"] = value

        config = cls.from_options(options)

        config.dedup_window_seconds = float(
            env.get("OPS_DEDUP_WINDOW_SECONDS", config.dedup_window_seconds)
        )
        config.lead_time_days = int(env.get("OPS_LEAD_TIME_DAYS", config.lead_time_days))
        config.probe_timeout = float(env.get("OPS_PROBE_TIMEOUT", config.probe_timeout))
        config.database_url = env.get("DATABASE_URL", config.database_url)
        config.api_health_url = env.get("API_HEALTH_URL", config.api_health_url)
        config.operations_api_url = env.get("OPERATIONS_API_URL", config.operations_api_url)
        config.ledger_rpc_url = env.get("BLOCKCHAIN_RPC_URL", config.ledger_rpc_url)
        config.operations_api_key = env.get("OPERATIONS_API_KEY")
        config.ledger_private_key = env.get("BLOCKCHAIN_PRIVATE_KEY")
        config.redis_url = env.get("REDIS_URL", config.redis_url)
        config.dashboard_enabled = env.get("DASHBOARD_ENABLED", "true").lower() == "true"
        config.dashboard_host = env.get("DASHBOARD_HOST", config.dashboard_host)
        config.dashboard_port = int(env.get("DASHBOARD_PORT", config.dashboard_port))
        config.telegram_bot_token = env.get("TELEGRAM_BOT_TOKEN")
        config.telegram_chat_id = env.get("TELEGRAM_CHAT_ID")

        components = env.get("OPS_MONITORED_COMPONENTS")
        if components:
            config.monitored_components = tuple(
                c.strip() for c in components.split(",") if c.strip()
            )

        return config

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "AgentConfig":
        """
        Build configuration from a dotted-key mapping.

        Both snake_case and camelCase keys are accepted
        (``autoHealing.restartServices`` == ``auto_healing.restart_services``).
        Unknown keys raise ValueError so typos do not silently fall back to
        defaults.
        """
        config = cls()

        for dotted, raw in options.items():
            if "." not in dotted:
                raise ValueError(f"Configuration key must be dotted: {dotted}")

            group_key, option_key = dotted.split(".", 1)
            group_name = _snake(group_key)
            option_name = _snake(option_key)

            group = getattr(config, group_name, None)
            if group is None or not hasattr(group, "__dataclass_fields__"):
                raise ValueError(f"Unknown configuration group: {group_key}")

            known = {f.name: f for f in fields(group)}
            if option_name not in known:
                raise ValueError(f"Unknown configuration option: {dotted}")

            current = getattr(group, option_name)
            setattr(group, option_name, _coerce(raw, type(current)))

        return config


def _snake(name: str) -> str:
    """camelCase -> snake_case (already snake names pass through)."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _coerce(value: Any, target: type) -> Any:
    """Coerce a raw option (often a string from the environment) to target."""
    if target is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if target is int:
        return int(float(value))
    if target is float:
        return float(value)
    return value
