"""Best-effort change notifications (fan-out to websocket subscribers)."""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from mediatier.db.models import MediaItem

logger = logging.getLogger(__name__)

MEDIA_UPDATED = "MediaUpdated"


def media_item_payload(item: MediaItem) -> Dict[str, Any]:
    state = item.current_state
    return {
        "id": item.id,
        "title": item.title,
        "type": getattr(item.type, "value", item.type),
        "current_state": getattr(state, "value", state),
        "file_path": item.file_path,
        "state_changed_at": item.state_changed_at.isoformat() if item.state_changed_at else None,
    }


class NotificationHub:
    """Diffusion à tous les abonnés. Un abonné trop lent perd des événements."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        message = {"event": event, "data": data}
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.debug("Dropping %s event for slow subscriber", event)

    def media_updated(self, item: MediaItem) -> None:
        self.publish(MEDIA_UPDATED, media_item_payload(item))


def emit_media_updated(notifier: Optional[NotificationHub], items: Iterable[MediaItem]) -> None:
    """Notifie après commit; un échec est journalisé et n'annule rien."""
    if notifier is None:
        return
    for item in items:
        try:
            notifier.media_updated(item)
        except Exception as e:
            logger.warning("Failed to send MediaUpdated notification for item %s: %s", getattr(item, "id", None), e)

