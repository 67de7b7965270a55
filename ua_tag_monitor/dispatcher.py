"""
Value dispatching for data change notifications.

asyncua hands every changed monitored item to ``datachange_notification``
separately. ``SubscriptionHandler`` turns each call into a one-item
``ChangedItem`` batch for ``ValueDispatcher``, so the ``Data change from
server:`` header is printed once per item. The dispatcher prints each value
and passes present values on to the configured forwarders.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

from asyncua import Node, ua

logger = logging.getLogger(__name__)


def format_value(value: Any) -> str:
    """Text used for a value on the console and on every forwarder."""
    if isinstance(value, ua.LocalizedText):
        return value.Text or ""
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return str(value)


@dataclass(frozen=True)
class TagValue:
    """Either a present payload or the status code explaining its absence."""

    present: bool
    value: Any = None
    status: ua.StatusCode = field(default_factory=ua.StatusCode)

    @classmethod
    def of(cls, value: Any, status: Optional[ua.StatusCode] = None) -> "TagValue":
        return cls(True, value, status if status is not None else ua.StatusCode())

    @classmethod
    def absent(cls, status: Optional[ua.StatusCode] = None) -> "TagValue":
        return cls(False, None, status if status is not None else ua.StatusCode())

    @classmethod
    def from_data_value(cls, data_value: ua.DataValue) -> "TagValue":
        status = data_value.StatusCode
        variant = data_value.Value
        if variant is None or variant.VariantType == ua.VariantType.Null:
            return cls.absent(status)
        return cls.of(variant.Value, status)

    @property
    def text(self) -> str:
        if self.present:
            return format_value(self.value)
        return self.status.name


@dataclass(frozen=True)
class ChangedItem:
    tag: str
    node_id: str
    value: TagValue

    @classmethod
    def from_notification(cls, node: Node, data: Any) -> "ChangedItem":
        nodeid = node.nodeid
        return cls(
            tag=str(nodeid.Identifier),
            node_id=nodeid.to_string(),
            value=TagValue.from_data_value(data.monitored_item.Value),
        )


class Forwarder(Protocol):
    async def send(self, item: ChangedItem) -> None: ...


def print_value(item: ChangedItem) -> None:
    if item.value.present:
        print(f'Item "{item.node_id}", Value = {item.value.text}')
    else:
        print(f'Item "{item.node_id}", Value not found, error: {item.value.text}')


class ValueDispatcher:
    def __init__(self, forwarders: Sequence[Forwarder] = ()) -> None:
        self.forwarders = list(forwarders)

    async def on_change(self, batch: Sequence[ChangedItem]) -> None:
        """Print every item in the batch and forward the present values."""
        print("Data change from server:")
        for item in batch:
            print_value(item)
            if not item.value.present:
                continue
            for forwarder in self.forwarders:
                await forwarder.send(item)


class SubscriptionHandler:
    """
    Subscription handler passed to ``Client.create_subscription``.

    A bad status change on the subscription (session closed, timeout) sets
    ``terminated`` so the run loop can stop.
    """

    def __init__(self, dispatcher: ValueDispatcher, terminated: Optional[asyncio.Event] = None) -> None:
        self.dispatcher = dispatcher
        self.terminated = terminated if terminated is not None else asyncio.Event()

    async def datachange_notification(self, node: Node, val: Any, data: Any) -> None:
        del val
        await self.dispatcher.on_change([ChangedItem.from_notification(node, data)])

    def status_change_notification(self, status: ua.StatusChangeNotification) -> None:
        code = status.Status
        if code.is_good():
            logger.info("Subscription status changed: %s", code.name)
            return
        logger.error("Subscription status changed: %s", code.name)
        self.terminated.set()
