"""Subscribe to OPC UA tags and print (or forward) their values."""

from ua_tag_monitor.config import Config, load_config, parse_tags
from ua_tag_monitor.dispatcher import ChangedItem, TagValue, ValueDispatcher, format_value
from ua_tag_monitor.exceptions import (
    ConfigurationError,
    MonitorError,
    SessionError,
    SubscriptionError,
)
from ua_tag_monitor.session import SessionState, connect, run, subscribe

__version__ = "0.1.0"

__all__ = [
    "ChangedItem",
    "Config",
    "ConfigurationError",
    "MonitorError",
    "SessionError",
    "SessionState",
    "SubscriptionError",
    "TagValue",
    "ValueDispatcher",
    "connect",
    "format_value",
    "load_config",
    "parse_tags",
    "run",
    "subscribe",
]
