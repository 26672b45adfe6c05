"""
EventBus -- in-process delivery of InstanceTransitioned events.

Contract:
    ``subscribe()`` registers a handler, optionally filtered by workflow
    type (e.g. only ``LEAVE_APPROVAL``).  ``publish()`` delivers an event
    to every matching handler in registration order.

Architecture:
    Kernel > Services.  Called by the ApprovalEngine facade only after the
    transition that produced the events has committed, so no database
    lock is ever held while a handler runs.

Invariants enforced:
    - A failing handler never blocks the other handlers and never undoes
      the committed transition; the failure is logged with its traceback.
    - Delivery is at-least-once from the consumer's point of view:
      handlers de-duplicate with ``InstanceTransitioned.dedupe_key``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from workflow_kernel.domain.events import InstanceTransitioned
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.event_bus")

EventHandler = Callable[[InstanceTransitioned], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``subscribe()``; pass it to ``unsubscribe()``."""

    subscription_id: int
    handler: EventHandler
    workflow_type: str | None = None

    def accepts(self, event: InstanceTransitioned) -> bool:
        return self.workflow_type is None or self.workflow_type == event.workflow_type


class EventBus:
    """Registry of event handlers with synchronous fan-out."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def subscribe(
        self,
        handler: EventHandler,
        workflow_type: str | None = None,
    ) -> Subscription:
        with self._lock:
            subscription = Subscription(self._next_id, handler, workflow_type)
            self._next_id += 1
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = [
                s for s in self._subscriptions
                if s.subscription_id != subscription.subscription_id
            ]

    def publish(self, event: InstanceTransitioned) -> int:
        """Deliver one event. Returns the number of handlers that failed."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.accepts(event)]

        failures = 0
        for subscription in targets:
            try:
                subscription.handler(event)
            except Exception:
                failures += 1
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "instance_id": str(event.instance_id),
                        "sequence": event.sequence,
                        "subscription_id": subscription.subscription_id,
                    },
                )
        return failures

    def publish_all(self, events: Iterable[InstanceTransitioned]) -> int:
        return sum(self.publish(e) for e in events)

    def __len__(self) -> int:
        return len(self._subscriptions)
