import asyncio
import logging
import os
import signal
import sys
from typing import Mapping, Optional

from aiomqtt import MqttError
from dotenv import load_dotenv
from kafka.errors import KafkaError

from ua_tag_monitor import session
from ua_tag_monitor.config import load_config
from ua_tag_monitor.dispatcher import SubscriptionHandler, ValueDispatcher
from ua_tag_monitor.exceptions import ConfigurationError, SessionError, SubscriptionError
from ua_tag_monitor.forwarders import build_forwarders

logger = logging.getLogger("ua_tag_monitor")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            pass


async def main(environ: Optional[Mapping[str, str]] = None, stop_event: Optional[asyncio.Event] = None) -> int:
    """
    Connect, subscribe and print tag values until the session terminates.

    Returns the process exit code. Configuration and connection failures are
    raised before any subscription is attempted.
    """
    config = load_config(environ)
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    client = await session.connect(config)
    forwarders = build_forwarders(config)
    handler = SubscriptionHandler(ValueDispatcher(forwarders), stop_event)
    try:
        for forwarder in forwarders:
            await forwarder.connect()
        try:
            await session.subscribe(client, config, handler)
        except SubscriptionError as exc:
            print("Error creating subscription")
            logger.error("%s", exc)
            return 1
        logger.info("Subscriptions active. Press Ctrl+C to exit.")
        await session.run(client, config, stop_event)
        return 0
    finally:
        for forwarder in forwarders:
            await forwarder.close()
        await session.disconnect(client)


def cli() -> None:
    load_dotenv(override=True)
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        logging.basicConfig(format=LOG_FORMAT)
        logger.critical("Invalid configuration: unknown LOG_LEVEL %r", level)
        sys.exit(1)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    try:
        code = asyncio.run(main(os.environ))
    except ConfigurationError as exc:
        logger.critical("Invalid configuration: %s", exc)
        code = 1
    except SessionError as exc:
        logger.critical("%s", exc)
        code = 1
    except (KafkaError, MqttError) as exc:
        logger.critical("Message queue broker unavailable: %s", exc)
        code = 1
    except KeyboardInterrupt:
        logger.info("Stopped by keyboard interrupt")
        code = 0
    sys.exit(code)
