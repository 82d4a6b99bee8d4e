"""Watch activity collector (Jellyfin playback history)."""
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from mediatier.core.notifications import NotificationHub, emit_media_updated
from mediatier.db.database import get_db_sync
from mediatier.db.models import MediaItem

logger = logging.getLogger(__name__)


class WatchStatusMonitor:
    """Met à jour last_watched_at (jamais en arrière) depuis Jellyfin."""

    def __init__(
        self,
        jellyfin=None,
        session_factory: Callable[[], Session] = get_db_sync,
        notifier: Optional[NotificationHub] = None,
    ):
        self.jellyfin = jellyfin
        self.session_factory = session_factory
        self.notifier = notifier

    async def update_watch_status(self) -> int:
        """Retourne le nombre d'items modifiés."""
        if self.jellyfin is None:
            logger.debug("Jellyfin not configured, skipping watch status update")
            return 0

        try:
            await self.jellyfin.get_items()
        except Exception as e:
            logger.warning("Failed to fetch Jellyfin catalog: %s", e)
            return 0

        updated: List[MediaItem] = []
        db = self.session_factory()
        try:
            for item in db.query(MediaItem).all():
                try:
                    # toujours par chemin: le fichier a pu changer depuis le dernier cycle
                    entry = await self.jellyfin.find_item(item.file_path)
                    if entry is None:
                        continue
                    changed = False
                    if entry.id and entry.id != item.jellyfin_id:
                        item.jellyfin_id = entry.id
                        changed = True
                    if item.record_watch(entry.last_played):
                        logger.info("Updated last watched for %s: %s", item.title, item.last_watched_at)
                        changed = True
                    if changed:
                        updated.append(item)
                except Exception as e:
                    logger.warning("Error updating watch status for %s: %s", item.title, e)

            if updated:
                db.commit()
                emit_media_updated(self.notifier, updated)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return len(updated)
