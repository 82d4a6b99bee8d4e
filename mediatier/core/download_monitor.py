"""Download completion detector."""
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from mediatier.core import activity
from mediatier.core.errors import PathAuthorizationError
from mediatier.core.filesystem import FileManager, path_key
from mediatier.core.kinds import KindRegistry, MediaKindHandler
from mediatier.core.models import FileState, LifecycleSettings, QueueEntry
from mediatier.core.notifications import NotificationHub, emit_media_updated
from mediatier.db.database import get_db_sync
from mediatier.db.models import MediaItem
from mediatier.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

# File indisponible pour ce cycle: aucune complétion ne peut être déduite
INCONCLUSIVE = None


class DownloadMonitor:
    """Passe Downloading -> Symlink/Mkv quand le fichier est arrivé et a quitté la file."""

    def __init__(
        self,
        registry: KindRegistry,
        session_factory: Callable[[], Session] = get_db_sync,
        notifier: Optional[NotificationHub] = None,
        clock: Callable = utcnow,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock

    async def _queue_for(
        self, handler: MediaKindHandler, queues: Dict[MediaKindHandler, Optional[List[QueueEntry]]]
    ) -> Optional[List[QueueEntry]]:
        # au plus une requête par service et par cycle
        if handler not in queues:
            try:
                queues[handler] = await handler.fetch_queue()
            except Exception as e:
                logger.warning("Failed to fetch %s queue, skipping its items this cycle: %s", handler.service_name, e)
                queues[handler] = INCONCLUSIVE
        return queues[handler]

    @staticmethod
    def _path_taken(db: Session, item: MediaItem, path: str) -> bool:
        key = path_key(path)
        return any(
            path_key(other.file_path) == key
            for other in db.query(MediaItem).filter(MediaItem.id != item.id).all()
        )

    async def check_downloads(self, settings: LifecycleSettings) -> int:
        """Retourne le nombre de téléchargements terminés détectés."""
        file_manager = FileManager(settings.media_library_path)
        completed: List[MediaItem] = []
        queues: Dict[MediaKindHandler, Optional[List[QueueEntry]]] = {}

        db = self.session_factory()
        try:
            items = db.query(MediaItem).filter(MediaItem.current_state == FileState.DOWNLOADING).all()
            for item in items:
                handler = self.registry.for_item(item)
                if not handler.configured or not handler.is_linked(item):
                    logger.debug("Downloading item %s has no %s linkage, skipping", item.title, handler.service_name)
                    continue

                queue = await self._queue_for(handler, queues)
                if queue is INCONCLUSIVE or handler.in_queue(item, queue):
                    continue

                try:
                    if not file_manager.file_exists(item.file_path):
                        # le fichier importé peut porter une autre extension que le placeholder
                        sibling = file_manager.find_media_sibling(item.file_path)
                        if sibling is None or self._path_taken(db, item, sibling):
                            continue
                        logger.info("Download for %s imported as %s", item.title, sibling)
                        item.move_to(sibling)
                    on_disk = FileState.SYMLINK if file_manager.is_symlink(item.file_path) else FileState.MKV
                    size = file_manager.get_file_size(item.file_path)
                except PathAuthorizationError as e:
                    logger.error("Refusing to inspect %s: %s", item.file_path, e)
                    continue
                except OSError as e:
                    logger.warning("Error inspecting %s: %s", item.file_path, e)
                    continue

                now = self.clock()
                previous = item.set_state(on_disk, now)
                item.file_size = size
                activity.record_activity(
                    db, item, activity.DOWNLOAD_COMPLETE, previous, on_disk,
                    f"Download completed via {handler.service_name}", now,
                )
                completed.append(item)
                logger.info("Download complete for %s (%s)", item.title, on_disk.value)

            if completed:
                db.commit()
                emit_media_updated(self.notifier, completed)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return len(completed)
