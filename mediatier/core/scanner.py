"""Library reconciler: keeps tracked items in line with the files on disk."""
import asyncio
import logging
import os
import re
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from mediatier.core import activity
from mediatier.core.filesystem import FileManager, path_key, stem_key
from mediatier.core.kinds import KindRegistry, MediaKindHandler
from mediatier.core.models import (
    CatalogEntry, FileState, LifecycleSettings, MediaFileInfo, MediaType, ScanResult,
)
from mediatier.core.notifications import NotificationHub, emit_media_updated
from mediatier.db.database import get_db_sync
from mediatier.db.models import MediaItem
from mediatier.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

SEASON_EPISODE_RE = re.compile(r"S(\d+)E(\d+)", re.IGNORECASE)

_IN_FLIGHT_STATES = (FileState.DOWNLOADING, FileState.PENDING_SYMLINK)


def relative_library_path(path: str, root: str) -> str:
    """Chemin relatif à la racine, en minuscules.

    Hors de la racine: les deux derniers composants du chemin.
    """
    normalized = path_key(path)
    base = path_key(root)
    if base and (normalized == base or normalized.startswith(base + "/")):
        return normalized[len(base):].lstrip("/")
    return "/".join(normalized.split("/")[-2:])


def determine_media_type(path: str) -> MediaType:
    segments = path_key(path).split("/")[:-1]
    if "anime" in segments:
        return MediaType.ANIME
    if "tv" in segments or "series" in segments:
        return MediaType.SERIES
    return MediaType.MOVIE


def parse_season_episode(path: str) -> Tuple[Optional[int], Optional[int]]:
    stem = os.path.splitext(path.replace("\\", "/").rsplit("/", 1)[-1])[0]
    match = SEASON_EPISODE_RE.search(stem)
    if not match:
        return None, None
    return int(match.group(1)), int(match.group(2))


class CatalogIndex:
    """Entrées d'un service catalogue, indexées par chemin relatif."""

    def __init__(self, root: str):
        self.root = root
        self._entries: Dict[str, CatalogEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: CatalogEntry) -> None:
        if not entry.path:
            return
        key = relative_library_path(entry.path, self.root)
        if key:
            self._entries[key] = entry

    def match(self, file_path: str) -> Optional[CatalogEntry]:
        """Entrée dont le chemin est le plus long préfixe (par segments) du fichier."""
        relative = relative_library_path(file_path, self.root)
        best_key = None
        for key in self._entries:
            if relative == key or relative.startswith(key + "/"):
                if best_key is None or len(key) > len(best_key):
                    best_key = key
        return self._entries[best_key] if best_key is not None else None


class LibraryScanner:
    """Réconciliation périodique bibliothèque <-> base."""

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

    async def _build_indexes(self, root: str) -> Dict[MediaKindHandler, CatalogIndex]:
        indexes = {}
        for handler in self.registry.handlers:
            index = CatalogIndex(root)
            indexes[handler] = index
            if not handler.configured:
                continue
            try:
                for entry in await handler.fetch_catalog():
                    index.add(entry)
                logger.info("Loaded %d entries from %s", len(index), handler.service_name)
            except Exception as e:
                logger.warning("Failed to fetch catalog from %s: %s", handler.service_name, e)
        return indexes

    def _link(self, item: MediaItem, indexes: Dict[MediaKindHandler, CatalogIndex]) -> bool:
        handler = self.registry.for_item(item)
        entry = indexes[handler].match(item.file_path)
        if entry is None:
            return False
        changed = handler.apply_catalog_entry(item, entry)
        if entry.title and item.title != entry.title:
            item.title = entry.title
            changed = True
        return changed

    async def scan_library(self, settings: LifecycleSettings) -> ScanResult:
        """Une passe de réconciliation complète (un seul commit)."""
        root = settings.media_library_path
        file_manager = FileManager(root)
        indexes = await self._build_indexes(root)
        files = await asyncio.to_thread(file_manager.scan_directory)

        result = ScanResult()
        changed_items: List[MediaItem] = []
        db = self.session_factory()
        try:
            tracked = {path_key(item.file_path): item for item in db.query(MediaItem).all()}
            discovered = {path_key(info.path) for info in files}
            # téléchargements dont le placeholder a disparu, par dossier + nom de base
            relocatable = {
                stem_key(item.file_path): item
                for key, item in tracked.items()
                if item.current_state == FileState.DOWNLOADING and key not in discovered
            }
            seen = set()
            now = self.clock()

            for info in files:
                key = path_key(info.path)
                if key in seen:
                    continue
                seen.add(key)
                try:
                    item = tracked.get(key)
                    if item is None and stem_key(info.path) in relocatable:
                        item = relocatable.pop(stem_key(info.path))
                        del tracked[path_key(item.file_path)]
                        logger.info("Download for %s imported as %s", item.title, info.path)
                        item.move_to(info.path)
                        item.file_size = info.size
                        tracked[key] = item
                        result.updated += 1
                        changed_items.append(item)
                    elif item is None:
                        item = self._create_item(db, info, indexes, now)
                        tracked[key] = item
                        result.new += 1
                        result.new_paths.append(info.path)
                        changed_items.append(item)
                    elif self._refresh_item(db, item, info, indexes, settings, now):
                        result.updated += 1
                        changed_items.append(item)
                except Exception as e:
                    result.errors += 1
                    logger.error("Error reconciling %s: %s", info.path, e, exc_info=True)

            for key, item in tracked.items():
                if key in seen:
                    continue
                result.missing += 1
                if item.current_state == FileState.DOWNLOADING:
                    previous = item.set_state(FileState.PENDING_SYMLINK, now)
                    activity.record_activity(
                        db, item, activity.DOWNLOAD_MISSING, previous, FileState.PENDING_SYMLINK,
                        "File missing after download was triggered", now,
                    )
                    changed_items.append(item)
                logger.warning("Media file no longer exists: %s", item.file_path)

            db.commit()
            emit_media_updated(self.notifier, changed_items)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Library scan complete. Found %d new, %d updated, %d missing",
            result.new, result.updated, result.missing,
        )
        return result

    def _create_item(
        self,
        db: Session,
        info: MediaFileInfo,
        indexes: Dict[MediaKindHandler, CatalogIndex],
        now,
    ) -> MediaItem:
        media_type = determine_media_type(info.path)
        item = MediaItem(
            title=os.path.splitext(info.name)[0],
            type=media_type,
            file_path=info.path,
            file_size=info.size,
            created_at=now,
            is_excluded=False,
        )
        item.set_state(FileState.SYMLINK if info.is_symlink else FileState.MKV, now)
        if media_type.is_episodic:
            item.season_number, item.episode_number = parse_season_episode(info.path)
        self._link(item, indexes)
        db.add(item)
        logger.info(
            "Added new media item: %s (sonarr=%s, radarr=%s, tmdb=%s, tvdb=%s)",
            item.title, item.sonarr_id, item.radarr_id, item.tmdb_id, item.tvdb_id,
        )
        return item

    def _refresh_item(
        self,
        db: Session,
        item: MediaItem,
        info: MediaFileInfo,
        indexes: Dict[MediaKindHandler, CatalogIndex],
        settings: LifecycleSettings,
        now,
    ) -> bool:
        changed = False
        expected = FileState.SYMLINK if info.is_symlink else FileState.MKV

        if item.current_state != expected:
            if item.current_state not in _IN_FLIGHT_STATES:
                previous = item.set_state(expected, now)
                activity.record_activity(
                    db, item, activity.STATE_CORRECTED, previous, expected, "Representation changed on disk", now,
                )
                logger.info("State changed for %s: %s -> %s", item.title, previous.value, expected.value)
                changed = True
            elif self._pending_expired(item, settings, now):
                previous = item.set_state(expected, now)
                activity.record_activity(
                    db, item, activity.PENDING_RESOLVED, previous, expected,
                    "Pending request timed out, adopting on-disk state", now,
                )
                logger.info("Pending item %s resolved from disk: %s", item.title, expected.value)
                changed = True

        if not item.is_linked and self._link(item, indexes):
            logger.info(
                "Linked existing item %s (sonarr=%s, radarr=%s)", item.title, item.sonarr_id, item.radarr_id
            )
            changed = True

        if item.file_size != info.size:
            item.file_size = info.size
            changed = True
        return changed

    @staticmethod
    def _pending_expired(item: MediaItem, settings: LifecycleSettings, now) -> bool:
        if item.current_state != FileState.PENDING_SYMLINK or settings.pending_symlink_timeout is None:
            return False
        since = item.state_changed_at or item.created_at
        return now - since >= settings.pending_symlink_timeout
