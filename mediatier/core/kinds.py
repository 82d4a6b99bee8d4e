"""Per-kind behaviour: which cataloging service owns an item and how to talk to it.

Series and Anime are episodic and belong to Sonarr; movies belong to Radarr.
Callers go through `KindRegistry.for_item()` rather than testing the media type.
"""
import logging
from typing import Dict, List, Optional

from mediatier.core.models import MediaType, CatalogEntry, QueueEntry
from mediatier.db.models import MediaItem

logger = logging.getLogger(__name__)


def _assign(item: MediaItem, attr: str, value) -> bool:
    if value is None or getattr(item, attr) == value:
        return False
    setattr(item, attr, value)
    return True


class MediaKindHandler:
    """Base handler; subclasses bind one cataloging service."""

    service_name = ""
    media_types: tuple = ()

    def __init__(self, service=None):
        self.service = service

    @property
    def configured(self) -> bool:
        return self.service is not None

    def catalog_id(self, item: MediaItem) -> Optional[int]:
        raise NotImplementedError

    def is_linked(self, item: MediaItem) -> bool:
        return self.catalog_id(item) is not None

    async def fetch_catalog(self) -> List[CatalogEntry]:
        raise NotImplementedError

    def apply_catalog_entry(self, item: MediaItem, entry: CatalogEntry) -> bool:
        """Copie les identifiants de l'entrée catalogue. Retourne True si l'item a changé."""
        raise NotImplementedError

    async def trigger_search(self, item: MediaItem) -> None:
        raise NotImplementedError

    async def delete_via_api(self, item: MediaItem) -> bool:
        raise NotImplementedError

    async def fetch_queue(self) -> List[QueueEntry]:
        return await self.service.get_queue()

    def in_queue(self, item: MediaItem, queue: List[QueueEntry]) -> bool:
        catalog_id = self.catalog_id(item)
        return any(entry.catalog_id == catalog_id for entry in queue)


class EpisodicKind(MediaKindHandler):
    service_name = "sonarr"
    media_types = (MediaType.SERIES, MediaType.ANIME)

    def catalog_id(self, item: MediaItem) -> Optional[int]:
        return item.sonarr_id

    async def fetch_catalog(self) -> List[CatalogEntry]:
        return await self.service.get_series()

    def apply_catalog_entry(self, item: MediaItem, entry: CatalogEntry) -> bool:
        changed = _assign(item, "sonarr_id", entry.id)
        changed = _assign(item, "tvdb_id", entry.tvdb_id) or changed
        changed = _assign(item, "tmdb_id", entry.tmdb_id) or changed
        return changed

    async def trigger_search(self, item: MediaItem) -> None:
        episode_ids = None
        if item.season_number is not None:
            episode_ids = await self.service.get_episode_ids(
                item.sonarr_id, item.season_number, item.episode_number
            )
        await self.service.trigger_search(item.sonarr_id, episode_ids or None)

    async def delete_via_api(self, item: MediaItem) -> bool:
        return await self.service.delete_episode_file_by_path(item.sonarr_id, item.file_path)


class MovieKind(MediaKindHandler):
    service_name = "radarr"
    media_types = (MediaType.MOVIE,)

    def catalog_id(self, item: MediaItem) -> Optional[int]:
        return item.radarr_id

    async def fetch_catalog(self) -> List[CatalogEntry]:
        return await self.service.get_movies()

    def apply_catalog_entry(self, item: MediaItem, entry: CatalogEntry) -> bool:
        changed = _assign(item, "radarr_id", entry.id)
        changed = _assign(item, "tmdb_id", entry.tmdb_id) or changed
        return changed

    async def trigger_search(self, item: MediaItem) -> None:
        await self.service.trigger_search(item.radarr_id)

    async def delete_via_api(self, item: MediaItem) -> bool:
        return await self.service.delete_movie_file_by_path(item.radarr_id, item.file_path)


class KindRegistry:
    """MediaType -> handler."""

    def __init__(self, sonarr=None, radarr=None):
        self.episodic = EpisodicKind(sonarr)
        self.movie = MovieKind(radarr)
        self._handlers: Dict[MediaType, MediaKindHandler] = {}
        for handler in (self.episodic, self.movie):
            for media_type in handler.media_types:
                self._handlers[media_type] = handler

    @property
    def handlers(self) -> List[MediaKindHandler]:
        return [self.episodic, self.movie]

    def for_type(self, media_type: MediaType) -> MediaKindHandler:
        return self._handlers[MediaType(media_type)]

    def for_item(self, item: MediaItem) -> MediaKindHandler:
        return self.for_type(item.type)
