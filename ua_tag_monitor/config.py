import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from ua_tag_monitor.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_NAME = "DCS OPC UA client"
DEFAULT_APPLICATION_URI = "urn:DCSOPCUAClient"


@dataclass(frozen=True)
class KafkaConfig:
    broker: str
    topic: str = "pss"
    partition: int = 1
    key: str = "start_kanban"
    ack_timeout: float = 1.0


@dataclass(frozen=True)
class MqttConfig:
    broker: str
    port: int = 1883
    user: Optional[str] = None
    password: Optional[str] = None
    topic_prefix: str = "opcua"
    qos: int = 0


@dataclass(frozen=True)
class Config:
    endpoint: str
    tags: List[str]
    namespace: int = 2
    application_name: str = DEFAULT_APPLICATION_NAME
    application_uri: str = DEFAULT_APPLICATION_URI
    session_retry_limit: int = 3
    retry_delay: float = 5.0
    timeout: float = 4.0
    # Requested values; the server is free to revise them.
    publishing_interval: float = 2000.0
    lifetime_count: int = 30
    max_keepalive_count: int = 10
    watchdog_interval: float = 1.0
    kafka: Optional[KafkaConfig] = None
    mqtt: Optional[MqttConfig] = None


def parse_tags(raw: str) -> List[str]:
    """Split a comma separated tag list, trimming whitespace around each tag."""
    tags = []
    for segment in raw.split(","):
        tag = segment.strip()
        if not tag:
            logger.warning("Ignoring empty tag in %r", raw)
            continue
        tags.append(tag)
    return tags


def require_env(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name)
    if value is None or not value.strip():
        raise ConfigurationError(f"Environment variable {name} is required but not set.")
    return value


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {value!r}") from None


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number, got {value!r}") from None


def _load_kafka(environ: Mapping[str, str]) -> Optional[KafkaConfig]:
    broker = environ.get("KAFKA_BROKER")
    if not broker:
        return None
    return KafkaConfig(
        broker=broker,
        topic=environ.get("KAFKA_TOPIC") or KafkaConfig.topic,
        partition=_get_int(environ, "KAFKA_PARTITION", KafkaConfig.partition),
        key=environ.get("KAFKA_KEY") or KafkaConfig.key,
        ack_timeout=_get_float(environ, "KAFKA_ACK_TIMEOUT", KafkaConfig.ack_timeout),
    )


def _load_mqtt(environ: Mapping[str, str]) -> Optional[MqttConfig]:
    broker = environ.get("MQTT_BROKER")
    if not broker:
        return None
    return MqttConfig(
        broker=broker,
        port=_get_int(environ, "MQTT_PORT", MqttConfig.port),
        user=environ.get("MQTT_USER") or None,
        password=environ.get("MQTT_PASSWORD") or None,
        topic_prefix=environ.get("MQTT_TOPIC_PREFIX") or MqttConfig.topic_prefix,
        qos=_get_int(environ, "MQTT_QOS", MqttConfig.qos),
    )


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the monitor configuration from the environment.

    When no mapping is given, a ``.env`` file in the working directory is loaded
    first and its values override the process environment.

    Raises:
        ConfigurationError: if OPCUA_SERVER or MONITORED_TAGS is missing, or a
            numeric setting cannot be parsed.
    """
    if environ is None:
        load_dotenv(override=True)
        environ = os.environ

    endpoint = require_env(environ, "OPCUA_SERVER")
    raw_tags = require_env(environ, "MONITORED_TAGS")
    print(f"OPC UA tags: {raw_tags!r}")
    tags = parse_tags(raw_tags)
    if not tags:
        raise ConfigurationError("MONITORED_TAGS does not contain any tag.")
    print(f"Monitored tags: {tags}")

    return Config(
        endpoint=endpoint,
        tags=tags,
        namespace=_get_int(environ, "OPCUA_NAMESPACE", Config.namespace),
        application_name=environ.get("OPCUA_APPLICATION_NAME") or DEFAULT_APPLICATION_NAME,
        application_uri=environ.get("OPCUA_APPLICATION_URI") or DEFAULT_APPLICATION_URI,
        session_retry_limit=_get_int(environ, "OPCUA_SESSION_RETRY_LIMIT", Config.session_retry_limit),
        retry_delay=_get_float(environ, "OPCUA_RETRY_DELAY", Config.retry_delay),
        timeout=_get_float(environ, "OPCUA_TIMEOUT", Config.timeout),
        publishing_interval=_get_float(environ, "OPCUA_PUBLISHING_INTERVAL", Config.publishing_interval),
        lifetime_count=_get_int(environ, "OPCUA_LIFETIME_COUNT", Config.lifetime_count),
        max_keepalive_count=_get_int(environ, "OPCUA_MAX_KEEPALIVE_COUNT", Config.max_keepalive_count),
        watchdog_interval=_get_float(environ, "OPCUA_WATCHDOG_INTERVAL", Config.watchdog_interval),
        kafka=_load_kafka(environ),
        mqtt=_load_mqtt(environ),
    )
