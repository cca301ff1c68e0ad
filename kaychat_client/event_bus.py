"""In-process fan-out of raw inbound frames.

The transport listener publishes each received frame once; chat sessions
subscribe for as long as they live. Delivery is synchronous and in publish
order. Frames published while nobody is subscribed are dropped, so a
consumer must subscribe before it sends anything that could provoke a reply.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

_LOGGER = logging.getLogger(__name__)

FrameHandler = Callable[[str], object]


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`EventRelay.subscribe`."""

    relay: EventRelay
    handler: FrameHandler
    subscription_id: int
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        """Detach the handler. Safe to call more than once."""
        self.relay.unsubscribe(self)


class EventRelay:
    """Publish/subscribe bridge between the transport and its consumers."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: FrameHandler) -> Subscription:
        """Register a handler for every frame published from now on."""
        subscription = Subscription(
            relay=self,
            handler=handler,
            subscription_id=next(self._ids),
        )
        self._subscriptions[subscription.subscription_id] = subscription
        _LOGGER.debug("Subscriber #%d attached", subscription.subscription_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscription. Unknown or inactive handles are ignored."""
        if self._subscriptions.pop(subscription.subscription_id, None) is not None:
            _LOGGER.debug("Subscriber #%d detached", subscription.subscription_id)
        subscription.active = False

    def publish(self, frame: str) -> int:
        """Deliver a frame to all current subscribers.

        Returns:
            Number of subscribers the frame was delivered to.
        """
        # Snapshot so handlers may unsubscribe during delivery.
        targets = list(self._subscriptions.values())
        if not targets:
            _LOGGER.debug("Frame dropped: no subscribers")
            return 0

        delivered = 0
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.handler(frame)
            except Exception as err:
                _LOGGER.exception(
                    "Subscriber #%d failed on frame: %s",
                    subscription.subscription_id,
                    err,
                )
            delivered += 1
        return delivered


_default_relay: EventRelay | None = None


def get_event_relay() -> EventRelay:
    """Return the process-wide relay, creating it on first use."""
    global _default_relay
    if _default_relay is None:
        _default_relay = EventRelay()
    return _default_relay
