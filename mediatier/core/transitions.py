"""Transition engine: moves items between placeholder and local-file form.

State machine:

    Symlink / PendingSymlink --transition_to_mkv--> Downloading
    Mkv / Downloading --transition_to_symlink--> PendingSymlink
    Downloading --complete_download--> Symlink | Mkv
    PendingSymlink --mark_request_available--> Symlink

Every transition commits with one ActivityLog row, then emits a best-effort
MediaUpdated notification. A recreate-capable action (search, request) is
always attempted before the file is deleted.
"""
import logging
import math
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from mediatier.core import activity
from mediatier.core.errors import InvalidTransitionError, MediaItemNotFoundError
from mediatier.core.filesystem import FileManager, path_key
from mediatier.core.kinds import KindRegistry, MediaKindHandler
from mediatier.core.models import (
    FileState, LifecycleSettings, SweepResult, TransitionCandidate, TransitionOutcome,
)
from mediatier.core.notifications import NotificationHub, emit_media_updated
from mediatier.db.database import get_db_sync
from mediatier.db.models import MediaItem
from mediatier.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = timedelta(days=7)

TO_MKV_SOURCES = (FileState.SYMLINK, FileState.PENDING_SYMLINK)
TO_SYMLINK_SOURCES = (FileState.MKV, FileState.DOWNLOADING)


def days_until(remaining: timedelta) -> int:
    """Jours restants arrondis au supérieur (négatif = en retard)."""
    return math.ceil(remaining.total_seconds() / 86400)


class TransitionService:
    """Moteur de transitions (forçage manuel, balayage automatique, prévision)."""

    def __init__(
        self,
        registry: KindRegistry,
        jellyseerr=None,
        session_factory: Callable[[], Session] = get_db_sync,
        notifier: Optional[NotificationHub] = None,
        clock: Callable = utcnow,
    ):
        self.registry = registry
        self.jellyseerr = jellyseerr
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock

    # Suppression

    async def _delete_file(self, item: MediaItem, handler: MediaKindHandler, file_manager: FileManager) -> str:
        """Supprime via l'API du service catalogue, puis sur disque si le fichier est toujours là."""
        deleted_via_api = False
        if handler.configured and handler.is_linked(item):
            deleted_via_api = await handler.delete_via_api(item)

        if file_manager.file_exists(item.file_path):
            file_manager.delete_file(item.file_path)
            return "Deleted from disk"
        if deleted_via_api:
            return f"Deleted via {handler.service_name.capitalize()} API"
        return "File already absent"

    def _commit(self, db: Session, item: MediaItem) -> None:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        emit_media_updated(self.notifier, [item])

    # Transitions

    async def transition_to_mkv(self, db: Session, item: MediaItem, settings: LifecycleSettings) -> TransitionOutcome:
        """Symlink/PendingSymlink -> Downloading: recherche, puis suppression du placeholder."""
        if item.current_state not in TO_MKV_SOURCES:
            raise InvalidTransitionError(
                f"Cannot transition '{item.title}' to MKV from state {item.current_state.value}"
            )
        file_manager = FileManager(settings.media_library_path)
        file_manager.validate_path(item.file_path)
        handler = self.registry.for_item(item)

        if handler.configured and handler.is_linked(item):
            try:
                await handler.trigger_search(item)
            except Exception as e:
                logger.error("Search failed for %s, file left in place: %s", item.title, e)
                raise
        else:
            logger.warning(
                "%s is not linked to %s, deleting without triggering a search", item.title, handler.service_name
            )

        details = await self._delete_file(item, handler, file_manager)
        now = self.clock()
        previous = item.set_state(FileState.DOWNLOADING, now)
        activity.record_activity(db, item, activity.TRANSITION_TO_MKV, previous, FileState.DOWNLOADING, details, now)
        self._commit(db, item)
        logger.info("Transitioned %s to MKV (%s)", item.title, details)
        return TransitionOutcome.COMPLETED

    async def transition_to_symlink(
        self, db: Session, item: MediaItem, settings: LifecycleSettings
    ) -> TransitionOutcome:
        """Mkv/Downloading -> PendingSymlink: demande de ré-acquisition, puis suppression du fichier."""
        if item.current_state not in TO_SYMLINK_SOURCES:
            raise InvalidTransitionError(
                f"Cannot transition '{item.title}' to symlink from state {item.current_state.value}"
            )
        if item.tmdb_id is None:
            logger.warning("%s has no TMDB id, cannot re-request it; transition skipped", item.title)
            return TransitionOutcome.SKIPPED
        if self.jellyseerr is None:
            logger.warning("Jellyseerr not configured; transition to symlink skipped for %s", item.title)
            return TransitionOutcome.SKIPPED

        file_manager = FileManager(settings.media_library_path)
        file_manager.validate_path(item.file_path)
        handler = self.registry.for_item(item)

        seasons = [item.season_number] if item.season_number is not None else None
        request_id = await self.jellyseerr.create_request(item.tmdb_id, item.type, item.tvdb_id, seasons)

        details = await self._delete_file(item, handler, file_manager)
        now = self.clock()
        if request_id is not None:
            item.jellyseerr_request_id = request_id
        previous = item.set_state(FileState.PENDING_SYMLINK, now)
        activity.record_activity(
            db, item, activity.TRANSITION_TO_SYMLINK, previous, FileState.PENDING_SYMLINK,
            f"{details}, requested via Jellyseerr", now,
        )
        self._commit(db, item)
        logger.info("Transitioned %s to symlink (request %s)", item.title, request_id)
        return TransitionOutcome.COMPLETED

    async def force_transition(self, item_id: int, target: FileState, settings: LifecycleSettings) -> TransitionOutcome:
        """Transition manuelle, quel que soit le mode de la bibliothèque."""
        db = self.session_factory()
        try:
            item = db.get(MediaItem, item_id)
            if item is None:
                raise MediaItemNotFoundError(f"Media item {item_id} not found")
            if target == FileState.MKV:
                return await self.transition_to_mkv(db, item, settings)
            if target == FileState.SYMLINK:
                return await self.transition_to_symlink(db, item, settings)
            raise InvalidTransitionError(f"Unsupported transition target: {target}")
        finally:
            db.close()

    async def complete_download(
        self,
        file_path: str,
        source: str,
        settings: LifecycleSettings,
        file_id: Optional[int] = None,
        size: Optional[int] = None,
        radarr_id: Optional[int] = None,
        sonarr_id: Optional[int] = None,
        season_number: Optional[int] = None,
        episode_number: Optional[int] = None,
    ) -> Optional[int]:
        """Downloading -> Symlink/Mkv sur notification d'import d'un service *arr.

        Retourne l'id de l'item mis à jour, ou None si aucun item en cours ne correspond.
        """
        file_manager = FileManager(settings.media_library_path)
        file_manager.validate_path(file_path)
        db = self.session_factory()
        try:
            downloading = db.query(MediaItem).filter(MediaItem.current_state == FileState.DOWNLOADING).all()
            key = path_key(file_path)
            item = next((i for i in downloading if path_key(i.file_path) == key), None)
            if item is None:
                item = self._match_by_linkage(downloading, radarr_id, sonarr_id, season_number, episode_number)
                if item is not None:
                    if db.query(MediaItem).filter(func.lower(MediaItem.file_path) == file_path.lower()).first():
                        logger.warning("Imported path %s is already tracked by another item", file_path)
                        return None
                    logger.info("Download for %s imported under a new path: %s", item.title, file_path)
                    item.move_to(file_path)
            if item is None:
                logger.info("No downloading item matches %s import of %s", source, file_path)
                return None

            on_disk = FileState.SYMLINK if file_manager.is_symlink(file_path) else FileState.MKV
            now = self.clock()
            previous = item.set_state(on_disk, now)
            if size is not None:
                item.file_size = size
            if file_id is not None:
                if source.lower() == "sonarr":
                    item.sonarr_file_id = file_id
                else:
                    item.radarr_file_id = file_id
            activity.record_activity(
                db, item, activity.DOWNLOAD_COMPLETE, previous, on_disk,
                f"Downloaded via {source}: {file_path}", now,
            )
            self._commit(db, item)
            logger.info("%s download complete for %s", source, item.title)
            return item.id
        finally:
            db.close()

    @staticmethod
    def _match_by_linkage(
        items: List[MediaItem],
        radarr_id: Optional[int],
        sonarr_id: Optional[int],
        season_number: Optional[int],
        episode_number: Optional[int],
    ) -> Optional[MediaItem]:
        for item in items:
            if radarr_id is not None and item.radarr_id == radarr_id:
                return item
            if (
                sonarr_id is not None
                and item.sonarr_id == sonarr_id
                and season_number is not None
                and item.season_number == season_number
                and item.episode_number == episode_number
            ):
                return item
        return None

    async def mark_request_available(self, tmdb_id: int) -> int:
        """PendingSymlink -> Symlink pour tous les items de ce TMDB id."""
        db = self.session_factory()
        try:
            items = db.query(MediaItem).filter(
                MediaItem.tmdb_id == tmdb_id,
                MediaItem.current_state == FileState.PENDING_SYMLINK,
            ).all()
            if not items:
                return 0
            now = self.clock()
            for item in items:
                previous = item.set_state(FileState.SYMLINK, now)
                activity.record_activity(
                    db, item, activity.REQUEST_AVAILABLE, previous, FileState.SYMLINK,
                    "Request available in Jellyseerr", now,
                )
                logger.info("Media item %s is now available as symlink", item.title)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            emit_media_updated(self.notifier, items)
            return len(items)
        finally:
            db.close()

    # Balayage automatique

    async def check_and_process_transitions(self, settings: LifecycleSettings) -> SweepResult:
        result = SweepResult()
        if not settings.automation_enabled:
            logger.debug("Library mode %s, automatic transitions disabled", settings.library_mode.value)
            result.mode_disabled = True
            return result

        now = self.clock()
        db = self.session_factory()
        try:
            symlink_items = db.query(MediaItem).filter(
                MediaItem.current_state == FileState.SYMLINK,
                MediaItem.is_excluded == False,  # noqa: E712
            ).all()
            mkv_items = db.query(MediaItem).filter(
                MediaItem.current_state == FileState.MKV,
                MediaItem.is_excluded == False,  # noqa: E712
            ).all()

            due_mkv = [i for i in symlink_items if now - i.symlink_reference_time >= settings.symlink_to_mkv]
            due_symlink = [i for i in mkv_items if now - i.mkv_reference_time >= settings.mkv_to_symlink]

            for item in due_mkv:
                outcome = await self._sweep_one(db, item, settings, self.transition_to_mkv, result)
                if outcome == TransitionOutcome.COMPLETED:
                    result.to_mkv += 1
            for item in due_symlink:
                outcome = await self._sweep_one(db, item, settings, self.transition_to_symlink, result)
                if outcome == TransitionOutcome.COMPLETED:
                    result.to_symlink += 1
        finally:
            db.close()

        if result.total or result.failed:
            logger.info(
                "Transition sweep: %d to MKV, %d to symlink, %d skipped, %d failed",
                result.to_mkv, result.to_symlink, result.skipped, result.failed,
            )
        return result

    async def _sweep_one(self, db, item, settings, operation, result: SweepResult) -> Optional[TransitionOutcome]:
        title = item.title
        try:
            outcome = await operation(db, item, settings)
        except Exception as e:
            db.rollback()
            result.failed += 1
            logger.error("Transition failed for %s: %s", title, e, exc_info=True)
            return None
        if outcome == TransitionOutcome.SKIPPED:
            result.skipped += 1
        return outcome

    # Prévision

    def get_upcoming_transitions(self, settings: LifecycleSettings, count: int = 10) -> List[TransitionCandidate]:
        now = self.clock()
        db = self.session_factory()
        try:
            symlink_ref = func.coalesce(MediaItem.last_watched_at, MediaItem.created_at)
            mkv_ref = func.coalesce(MediaItem.last_watched_at, MediaItem.state_changed_at, MediaItem.created_at)
            symlink_items = db.query(MediaItem).filter(
                MediaItem.current_state == FileState.SYMLINK,
                MediaItem.is_excluded == False,  # noqa: E712
            ).order_by(symlink_ref.asc()).limit(count).all()
            mkv_items = db.query(MediaItem).filter(
                MediaItem.current_state == FileState.MKV,
                MediaItem.is_excluded == False,  # noqa: E712
            ).order_by(mkv_ref.asc()).limit(count).all()

            candidates = []
            for item in symlink_items:
                candidate = self._candidate(
                    item, item.symlink_reference_time, settings.symlink_to_mkv, FileState.MKV, now
                )
                if candidate:
                    candidates.append(candidate)
            for item in mkv_items:
                candidate = self._candidate(
                    item, item.mkv_reference_time, settings.mkv_to_symlink, FileState.SYMLINK, now
                )
                if candidate:
                    candidates.append(candidate)
        finally:
            db.close()

        candidates.sort(key=lambda c: c.days_until_transition)
        return candidates[:count]

    @staticmethod
    def _candidate(item, reference, threshold, target, now) -> Optional[TransitionCandidate]:
        remaining = threshold - (now - reference)
        if remaining > PREVIEW_WINDOW:
            return None
        return TransitionCandidate(
            media_item_id=item.id,
            title=item.title,
            current_state=item.current_state,
            target_state=target,
            days_until_transition=days_until(remaining),
            transition_date=reference + threshold,
        )
