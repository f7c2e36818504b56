"""Progress events for in-flight deployments (streamed over SSE)."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

TERMINAL_EVENT_TYPES = frozenset({"deployment_complete", "deployment_failed"})


@dataclass
class Event:
    """A deployment progress event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_json(self) -> str:
        """Serialize the payload for an SSE data field."""
        return json.dumps(
            {**self.data, "timestamp": self.timestamp.isoformat()}, default=str
        )


class EventBus:
    """Simple per-client event bus.

    Every subscriber gets its own queue and sees every event published for
    its client. Publishing to a client nobody is watching is a no-op.
    """

    def __init__(self):
        self._subscribers: dict[str, list[asyncio.Queue[Event]]] = {}

    def subscribe(self, client_id: str) -> asyncio.Queue[Event]:
        """Subscribe to events for a client."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.setdefault(client_id, []).append(queue)
        return queue

    def unsubscribe(self, client_id: str, queue: asyncio.Queue[Event]) -> None:
        """Drop one subscriber; other watchers of the client keep receiving."""
        queues = self._subscribers.get(client_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[client_id]

    async def publish(self, client_id: str, event: Event) -> None:
        """Publish an event to every subscriber of a client."""
        for queue in list(self._subscribers.get(client_id, ())):
            await queue.put(event)

    async def publish_step(
        self, client_id: str, deployment_id: str, step: str, **data: Any
    ) -> None:
        """Publish a deployment step event."""
        await self.publish(
            client_id,
            Event(
                event_type="step",
                data={
                    "client_id": client_id,
                    "deployment_id": deployment_id,
                    "step": step,
                    **data,
                },
            ),
        )

    async def publish_deployment_complete(
        self, client_id: str, deployment_id: str, service_url: str | None
    ) -> None:
        """Publish a deployment complete event."""
        await self.publish(
            client_id,
            Event(
                event_type="deployment_complete",
                data={
                    "client_id": client_id,
                    "deployment_id": deployment_id,
                    "service_url": service_url,
                },
            ),
        )

    async def publish_deployment_failed(
        self,
        client_id: str,
        deployment_id: str,
        error: str,
        step: str | None = None,
    ) -> None:
        """Publish a deployment failure event."""
        await self.publish(
            client_id,
            Event(
                event_type="deployment_failed",
                data={
                    "client_id": client_id,
                    "deployment_id": deployment_id,
                    "error": error,
                    "step": step,
                },
            ),
        )
