"""Event publishing for the support relay"""
import asyncio

from support_relay.domain.models import ConnectionClosed, InboundFrame

RelayEvent = InboundFrame | ConnectionClosed


class EventPublisher:
    """Publishes transport events to the single processing queue"""

    def __init__(self, queue: asyncio.Queue[RelayEvent]) -> None:
        self.queue = queue

    async def publish(self, event: RelayEvent) -> None:
        await self.queue.put(event)
