"""In-process audit publisher.

Keeps a bounded buffer of recent events and forwards each event to
registered hooks (for example a writer into the external audit log).
"""

from collections import deque
from collections.abc import Callable
from typing import Any

import structlog

from school_ledger.events.types import AuditAction, AuditEvent

logger = structlog.get_logger(__name__)


class AuditPublisher:
    """Publish audit events to hooks and keep recent history.

    Usage:
        publisher = AuditPublisher()
        publisher.add_event_hook(store_writer)
        publisher.publish(some_event)
    """

    def __init__(self, buffer_size: int = 100):
        self._buffer_size = buffer_size
        self._event_buffer: deque[AuditEvent] = deque(maxlen=buffer_size)
        self._event_hooks: list[Callable[[AuditEvent], None]] = []
        self._logger = logger.bind(component="audit_publisher")

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Get recently published events, oldest first."""
        return list(self._event_buffer)

    def events_for(self, action: AuditAction) -> list[AuditEvent]:
        return [event for event in self._event_buffer if event.action == action]

    def add_event_hook(self, hook: Callable[[AuditEvent], None]) -> None:
        """Add a hook to be called for every event.

        Hooks are called synchronously in registration order.

        Args:
            hook: Function that receives each event.
        """
        self._event_hooks.append(hook)

    def remove_event_hook(self, hook: Callable[[AuditEvent], None]) -> None:
        """Remove an event hook."""
        if hook in self._event_hooks:
            self._event_hooks.remove(hook)

    def publish(self, event: AuditEvent) -> None:
        """Record an event and pass it to every hook.

        A failing hook is logged and does not stop the others.
        """
        self._event_buffer.append(event)

        self._logger.info(
            "audit_event",
            action=event.action.value,
            status=event.status.value,
            actor_id=event.actor_id,
            resource_id=event.resource_id,
        )

        for hook in self._event_hooks:
            try:
                hook(event)
            except Exception as e:
                self._logger.error("event_hook_error", error=str(e))

    def get_status(self) -> dict[str, Any]:
        """Get publisher status information."""
        return {
            "buffer_size": self._buffer_size,
            "buffered_events": len(self._event_buffer),
            "hook_count": len(self._event_hooks),
        }
