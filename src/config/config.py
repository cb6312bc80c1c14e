"""Prediction pipeline configuration from YAML file.

A single config/config.yaml holds every setting:
- Broker connection settings and consumer/producer defaults
- Topics and durable subscription identities
- Event log directory and relational store URL
- Feeder scheduling

String values may reference the environment as ${VAR} or ${VAR:-default}.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

logger = logging.getLogger(__name__)

# Sample kinds and the topic suffix each one is published under
EVENT_KINDS = ("energy", "weather")

DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

# ${NAME} or ${NAME:-fallback}; an unset NAME without fallback is left as written
_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}")

SECURITY_PROTOCOLS = ("PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL")
OFFSET_RESET_POLICIES = ("earliest", "latest", "none")
COMPRESSION_TYPES = (None, "gzip", "snappy", "lz4", "zstd")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Parsed mapping from ``path``; empty when the file is missing or blank."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as stream:
        return yaml.safe_load(stream) or {}


def _expand_env_vars(data: Any) -> Any:
    """Substitute environment references in every string nested in ``data``."""
    if isinstance(data, str):
        return _ENV_REFERENCE.sub(
            lambda m: os.environ.get(m["name"], m["fallback"] if m["fallback"] is not None else m[0]),
            data,
        )
    if isinstance(data, dict):
        return {key: _expand_env_vars(item) for key, item in data.items()}
    if isinstance(data, list):
        return list(map(_expand_env_vars, data))
    return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """New dict with ``overlay`` applied on ``base``; nested mappings merge key by key."""
    merged = dict(base)
    for key, incoming in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(incoming, dict):
            merged[key] = _deep_merge(current, incoming)
        else:
            merged[key] = incoming
    return merged


def _require_one_of(section: str, settings: Dict[str, Any], key: str, allowed: Iterable[Any]) -> None:
    allowed = list(allowed)
    if key in settings and settings[key] not in allowed:
        raise ValueError(f"{section}: {key} must be one of {allowed}, got {settings[key]!r}")


def _require_at_least(
    section: str, settings: Dict[str, Any], key: str, floor: float, strict: bool = False
) -> None:
    if key not in settings:
        return
    value = settings[key]
    if value < floor or (strict and value == floor):
        relation = ">" if strict else ">="
        raise ValueError(f"{section}: {key} must be {relation} {floor}, got {value}")


def _require_between(section: str, settings: Dict[str, Any], key: str, low: float, high: float) -> None:
    if key in settings and not low <= settings[key] <= high:
        raise ValueError(f"{section}: {key} must be between {low} and {high}, got {settings[key]}")


def _check_consumer_settings(section: str, settings: Dict[str, Any]) -> None:
    heartbeat = settings.get("heartbeat_interval_ms")
    session_timeout = settings.get("session_timeout_ms")
    if heartbeat is not None and session_timeout is not None and heartbeat * 3 >= session_timeout:
        raise ValueError(
            f"{section}: heartbeat_interval_ms ({heartbeat}) must be below a third of "
            f"session_timeout_ms ({session_timeout})"
        )
    _require_at_least(section, settings, "max_poll_records", 1)
    _require_one_of(section, settings, "auto_offset_reset", OFFSET_RESET_POLICIES)
    if settings.get("enable_auto_commit"):
        raise ValueError(f"{section}: enable_auto_commit must be false; offsets are committed after handling")


def _check_producer_settings(section: str, settings: Dict[str, Any]) -> None:
    _require_one_of(section, settings, "acks", ("all", -1))
    _require_one_of(section, settings, "compression_type", COMPRESSION_TYPES)
    _require_at_least(section, settings, "linger_ms", 0)


@dataclass
class SubscriptionIdentity:
    """Durable subscriber identity: the pair survives process restarts."""

    client_id: str
    subscription_name: str


@dataclass
class PipelineConfig:
    """Prediction pipeline configuration.

    Configuration structure:
        broker:
          connection: {...}           # Shared connection settings
          consumer_defaults: {...}    # Default consumer settings
          producer_defaults: {...}    # Default producer settings
        topics:
          energy: prediction.Energy
          weather: prediction.Weather
        subscriptions:
          client_base_id: ...         # <base>_<Kind> / <base>_<Kind>Sub
          energy: {client_id, subscription_name}   # optional overrides
        eventstore: {base_dir}
        datamart: {database_url, numeric_tolerance}
        feeders: {interval_seconds}

    All broker timing values in milliseconds unless otherwise noted.
    """

    # broker.connection
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    connect_timeout_ms: int = 10000
    request_timeout_ms: int = 30000
    metadata_max_age_ms: int = 300000
    connections_max_idle_ms: int = 540000

    # broker.consumer_defaults / producer_defaults, overlaid per kind
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    topics: Dict[str, str] = field(
        default_factory=lambda: {"energy": "prediction.Energy", "weather": "prediction.Weather"}
    )
    subscriptions: Dict[str, Any] = field(default_factory=dict)

    eventstore_base_dir: str = "eventstore"
    database_url: str = "sqlite:///datamart.db"
    numeric_tolerance: float = 0.0001

    feeder_interval_seconds: float = 3600.0

    def get_topic(self, kind: str) -> str:
        if kind not in self.topics:
            raise ValueError(
                f"Topic for '{kind}' not configured. "
                f"Available topics: {list(self.topics.keys())}"
            )
        return self.topics[kind]

    def get_subscription_identity(self, kind: str) -> SubscriptionIdentity:
        """Durable subscriber identity for the event log consumer of a kind.

        Explicit per-kind settings win; otherwise both names derive from
        client_base_id, e.g. EventStoreBuilder_Energy / EventStoreBuilder_EnergySub.
        """
        self.get_topic(kind)
        overrides = self.subscriptions.get(kind, {}) or {}
        base_id = self.subscriptions.get("client_base_id", "EventStoreBuilder")
        default_client = f"{base_id}_{kind.capitalize()}"
        return SubscriptionIdentity(
            client_id=overrides.get("client_id", default_client),
            subscription_name=overrides.get("subscription_name", f"{default_client}Sub"),
        )

    def get_consumer_config(self, kind: Optional[str] = None) -> Dict[str, Any]:
        """Consumer settings: defaults overlaid with per-kind consumer settings."""
        result = self.consumer_defaults.copy()
        if kind:
            overrides = self.subscriptions.get(kind, {}) or {}
            result.update(overrides.get("consumer", {}))
        return result

    def get_producer_config(self) -> Dict[str, Any]:
        return self.producer_defaults.copy()

    def validate(self) -> None:
        """Raise ValueError naming the first setting that is missing or out of range."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in broker.connection section")

        connection = {
            "connect_timeout_ms": self.connect_timeout_ms,
            "request_timeout_ms": self.request_timeout_ms,
            "security_protocol": self.security_protocol,
        }
        _require_at_least("broker.connection", connection, "connect_timeout_ms", 0, strict=True)
        _require_at_least("broker.connection", connection, "request_timeout_ms", 0, strict=True)
        _require_one_of("broker.connection", connection, "security_protocol", SECURITY_PROTOCOLS)

        _check_consumer_settings("consumer_defaults", self.consumer_defaults)
        _check_producer_settings("producer_defaults", self.producer_defaults)
        for kind in EVENT_KINDS:
            kind_settings = self.subscriptions.get(kind) or {}
            if "consumer" in kind_settings:
                _check_consumer_settings(f"subscriptions.{kind}.consumer", kind_settings["consumer"])

        missing = [kind for kind in EVENT_KINDS if not self.topics.get(kind)]
        if missing:
            raise ValueError(f"topics: missing topic names for {missing}")
        for kind, topic in self.topics.items():
            if "." not in topic:
                raise ValueError(
                    f"topics.{kind}: '{topic}' must be '<prefix>.<Kind>' so the event log can derive its folder"
                )

        if not self.eventstore_base_dir:
            raise ValueError("eventstore.base_dir is required")
        if not self.database_url:
            raise ValueError("datamart.database_url is required")
        _require_between("datamart", {"numeric_tolerance": self.numeric_tolerance}, "numeric_tolerance", 0, 1)
        _require_at_least(
            "feeders", {"interval_seconds": self.feeder_interval_seconds}, "interval_seconds", 0, strict=True
        )


def _from_sections(data: Dict[str, Any]) -> PipelineConfig:
    broker = data["broker"]
    connection = broker.get("connection") or {}
    eventstore = data.get("eventstore") or {}
    datamart = data.get("datamart") or {}
    feeders = data.get("feeders") or {}
    defaults = PipelineConfig()

    def conn(key: str, cast=str):
        return cast(connection.get(key, getattr(defaults, key)))

    return PipelineConfig(
        bootstrap_servers=conn("bootstrap_servers"),
        security_protocol=conn("security_protocol"),
        sasl_mechanism=conn("sasl_mechanism"),
        sasl_plain_username=conn("sasl_plain_username"),
        sasl_plain_password=conn("sasl_plain_password"),
        connect_timeout_ms=conn("connect_timeout_ms", int),
        request_timeout_ms=conn("request_timeout_ms", int),
        metadata_max_age_ms=conn("metadata_max_age_ms", int),
        connections_max_idle_ms=conn("connections_max_idle_ms", int),
        consumer_defaults=dict(broker.get("consumer_defaults") or {}),
        producer_defaults=dict(broker.get("producer_defaults") or {}),
        topics={**defaults.topics, **(data.get("topics") or {})},
        subscriptions=dict(data.get("subscriptions") or {}),
        eventstore_base_dir=str(eventstore.get("base_dir", defaults.eventstore_base_dir)),
        database_url=datamart.get("database_url", defaults.database_url),
        numeric_tolerance=float(datamart.get("numeric_tolerance", defaults.numeric_tolerance)),
        feeder_interval_seconds=float(feeders.get("interval_seconds", defaults.feeder_interval_seconds)),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineConfig:
    """Read, expand, merge and validate the pipeline configuration.

    ``overrides`` are deep-merged over the file contents after environment
    expansion, so they win over both the file and the environment.
    """
    path = config_path or DEFAULT_CONFIG_FILE
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)
    data = _expand_env_vars(load_yaml(path))
    if overrides:
        logger.debug("Applying overrides for sections: %s", sorted(overrides))
        data = _deep_merge(data, overrides)

    if "broker" not in data:
        raise ValueError(f"Invalid config file {path}: missing 'broker:' section")

    config = _from_sections(data)
    config.validate()
    logger.debug(
        "Configuration loaded",
        extra={"bootstrap_servers": config.bootstrap_servers, "database_url": config.database_url},
    )
    return config


_pipeline_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """Process-wide configuration, loaded from the default file on first use."""
    global _pipeline_config
    if _pipeline_config is None:
        _pipeline_config = load_config()
    return _pipeline_config


def set_config(config: PipelineConfig) -> None:
    global _pipeline_config
    _pipeline_config = config


def reset_config() -> None:
    """Drop the cached configuration; the next get_config() reloads it."""
    global _pipeline_config
    _pipeline_config = None
