import asyncio
import logging
from enum import Enum
from typing import Any, Optional

from asyncua import Client, ua
from asyncua.common.subscription import Subscription

from ua_tag_monitor.config import Config
from ua_tag_monitor.exceptions import SessionError, SubscriptionError

logger = logging.getLogger(__name__)

# Lower asyncua's own logging, it is very chatty at INFO
logging.getLogger("asyncua").setLevel(logging.WARNING)

CONNECT_ERRORS = (OSError, asyncio.TimeoutError, ua.UaError)
MIN_PUBLISHING_INTERVAL = 100.0


class SessionState(str, Enum):
    RUNNING = "running"
    TERMINATED = "terminated"


def create_client(config: Config) -> Client:
    client = Client(url=config.endpoint, timeout=config.timeout)
    client.name = config.application_name
    client.description = config.application_name
    client.application_uri = config.application_uri
    return client


async def connect(config: Config) -> Client:
    """
    Open an anonymous session with security policy and mode ``None``.

    The connection is attempted ``session_retry_limit`` times, waiting
    ``retry_delay`` seconds between attempts.

    Raises:
        SessionError: once every attempt has failed.
    """
    client = create_client(config)
    logger.warning(
        "Connecting to %s without transport security (policy None, mode None, anonymous)",
        config.endpoint,
    )
    attempts = max(config.session_retry_limit, 1)
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            await client.connect()
        except CONNECT_ERRORS as exc:
            last_error = exc
            logger.error("Connection attempt %d/%d to %s failed: %s", attempt, attempts, config.endpoint, exc)
            if attempt < attempts:
                await asyncio.sleep(config.retry_delay)
            continue
        logger.info("Connected to OPC UA server: %s", config.endpoint)
        return client
    raise SessionError(f"Could not connect to {config.endpoint} after {attempts} attempts") from last_error


def subscription_parameters(config: Config) -> ua.CreateSubscriptionParameters:
    """
    Build the subscription request. Values low enough for asyncua to mark the
    subscription stale and recreate it are raised to a workable minimum.

    The lifetime count must be at least three times the keep-alive count.
    """
    interval = max(config.publishing_interval, MIN_PUBLISHING_INTERVAL)
    keepalive = max(config.max_keepalive_count, 1)
    lifetime = max(config.lifetime_count, 3 * keepalive)
    if (interval, keepalive, lifetime) != (
        config.publishing_interval,
        config.max_keepalive_count,
        config.lifetime_count,
    ):
        logger.warning(
            "Raised subscription parameters to interval=%sms lifetime=%s keepalive=%s",
            interval,
            lifetime,
            keepalive,
        )
    return ua.CreateSubscriptionParameters(
        RequestedPublishingInterval=interval,
        RequestedLifetimeCount=lifetime,
        RequestedMaxKeepAliveCount=keepalive,
        MaxNotificationsPerPublish=0,
        PublishingEnabled=True,
        Priority=0,
    )


def _status_of(exc: BaseException) -> Optional[ua.StatusCode]:
    code = getattr(exc, "code", None)
    if code is None:
        return None
    return ua.StatusCode(code)


async def subscribe(client: Client, config: Config, handler: Any) -> Subscription:
    """
    Create one subscription and a monitored item for every configured tag.

    Each tag becomes the string node id ``ns=<namespace>;s=<tag>``.

    Raises:
        SubscriptionError: if the server rejects the subscription or any
            monitored item.
    """
    try:
        subscription = await client.create_subscription(subscription_parameters(config), handler)
    except (ua.UaError, asyncio.TimeoutError) as exc:
        raise SubscriptionError(f"Subscription rejected: {exc}", _status_of(exc)) from exc
    logger.info("Subscription created with ID: %s", subscription.subscription_id)

    nodes = [client.get_node(ua.NodeId(tag, config.namespace)) for tag in config.tags]
    try:
        results = await subscription.subscribe_data_change(nodes)
    except (ua.UaError, asyncio.TimeoutError) as exc:
        raise SubscriptionError(f"Monitored items rejected: {exc}", _status_of(exc)) from exc

    for node, result in zip(nodes, results):
        if isinstance(result, ua.StatusCode):
            raise SubscriptionError(f"Monitored item {node.nodeid.to_string()} rejected: {result.name}", result)
    logger.info("Subscribed to %d OPC UA nodes", len(nodes))
    return subscription


async def run(client: Client, config: Config, stop_event: Optional[asyncio.Event] = None) -> SessionState:
    """
    Block until the session ends.

    The connection is checked every ``watchdog_interval`` seconds. The session
    terminates when the check fails or when ``stop_event`` is set, which the
    subscription handler does on a bad subscription status.
    """
    if stop_event is None:
        stop_event = asyncio.Event()
    logger.info("Session %s", SessionState.RUNNING.value)
    while not stop_event.is_set():
        try:
            await client.check_connection()
        except CONNECT_ERRORS as exc:
            logger.error("Connection to %s lost: %s", config.endpoint, exc)
            break
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=config.watchdog_interval)
        except asyncio.TimeoutError:
            pass
    logger.info("Session %s", SessionState.TERMINATED.value)
    return SessionState.TERMINATED


async def disconnect(client: Client) -> None:
    try:
        await client.disconnect()
    except CONNECT_ERRORS as exc:
        logger.warning("Error while disconnecting: %s", exc)
    else:
        logger.info("Disconnected from OPC UA server")
