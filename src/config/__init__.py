"""Configuration loading for the prediction pipeline.

Configuration is read from a single config/config.yaml file. Values may
reference environment variables with ${VAR} or ${VAR:-default}.

Usage
-----

    >>> from config import load_config
    >>>
    >>> config = load_config()
    >>> config.get_topic("energy")
    'prediction.Energy'
    >>> config.get_subscription_identity("energy").subscription_name
    'EventStoreBuilder_EnergySub'

Settings are merged in the following priority (highest to lowest):

1. Explicit overrides passed to load_config()
2. YAML configuration file (after environment expansion)
3. Dataclass defaults
"""

from config.config import (
    EVENT_KINDS,
    PipelineConfig,
    SubscriptionIdentity,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "PipelineConfig",
    "SubscriptionIdentity",
    "EVENT_KINDS",
]
